"""
VNPay imza/doğrulama: giden ödeme linkini HMAC-SHA512 ile imzalar, dönüş/IPN
parametrelerinin imzasını kontrol eder. Veritabanına dokunmaz.
"""
from __future__ import annotations

import enum
import hashlib
import hmac
import logging
import math
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Mapping, NamedTuple
from urllib.parse import urlencode

from voltsub.core.config import GatewayConfig
from voltsub.core.errors import InvalidInput

log = logging.getLogger("voltsub.vnpay")

VN_TZ = timezone(timedelta(hours=7))
DATE_FORMAT = "%Y%m%d%H%M%S"
HASH_FIELD = "vnp_SecureHash"
HASH_TYPE_FIELD = "vnp_SecureHashType"
ALLOWED_LOCALES = ("vn", "en")
_REF_ALPHABET = string.ascii_uppercase + string.digits

SUCCESS_CODE = "00"
CANCELLED_CODE = "24"

RESPONSE_MESSAGES = {
    "00": "Transaction successful",
    "07": "Money deducted, transaction suspected of fraud",
    "09": "Card/account not registered for internet banking",
    "10": "Card/account authentication failed more than 3 times",
    "11": "Payment timeout expired",
    "12": "Card/account is locked",
    "13": "Wrong transaction authentication password (OTP)",
    "24": "Customer cancelled the transaction",
    "51": "Insufficient account balance",
    "65": "Account exceeded daily transaction limit",
    "75": "Payment bank is under maintenance",
    "79": "Wrong payment password too many times",
    "99": "Other errors",
}


class VerifyContext(str, enum.Enum):
    """Hangi kanal: dönüş (vnp_ResponseCode) veya IPN (vnp_TransactionStatus)."""

    RETURN = "return"
    IPN = "ipn"

    @property
    def code_field(self) -> str:
        return "vnp_ResponseCode" if self is VerifyContext.RETURN else "vnp_TransactionStatus"


class SignedCheckout(NamedTuple):
    url: str
    fields: dict[str, str]

    @property
    def correlation_key(self) -> str:
        return self.fields["vnp_TxnRef"]


class VerifyResult(NamedTuple):
    is_valid: bool
    code: str
    fields: dict[str, str]
    message: str


class Outcome(NamedTuple):
    status: str  # success | failed | cancelled
    reason: str


def describe_code(code: str | None) -> str:
    if code in RESPONSE_MESSAGES:
        return RESPONSE_MESSAGES[code]
    return f"unknown error (code {code or ''})"


def resolve_outcome(code: str | None, is_valid: bool) -> Outcome:
    """Gateway sonuç kodunu ödeme durumuna çevirir (00 + geçerli imza = success, 24 = cancelled)."""
    if is_valid and code == SUCCESS_CODE:
        return Outcome("success", describe_code(code))
    if code == CANCELLED_CODE:
        return Outcome("cancelled", describe_code(code))
    return Outcome("failed", describe_code(code))


def format_vn_date(dt: datetime) -> str:
    """VNPay tarih formatı: YYYYMMDDhhmmss, UTC+7."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(VN_TZ).strftime(DATE_FORMAT)


def generate_reference(create_date: str) -> str:
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(8))
    return f"{create_date}-{suffix}"


def canonicalize(fields: Mapping[str, str]) -> str:
    """Anahtara göre sıralı, form-encoded (boşluk = '+') k=v&... dizesi."""
    return urlencode(sorted((k, str(v)) for k, v in fields.items()))


def sign(secret: str, data: str) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha512).hexdigest()


def normalize_fields(raw: Mapping[str, object] | None) -> dict[str, str]:
    """Query/body parametrelerini düz str sözlüğe çevirir: liste -> ilk eleman, None atlanır."""
    out: dict[str, str] = {}
    for key, value in (raw or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            if not value:
                continue
            value = value[0]
            if value is None:
                continue
        out[str(key)] = str(value)
    return out


class VnpayCodec:
    def __init__(self, config: GatewayConfig):
        self.config = config

    def build_checkout(
        self,
        amount: float | int,
        order_info: str,
        client_ip: str,
        correlation_key: str | None = None,
        bank_code: str | None = None,
        locale: str = "vn",
        order_type: str = "other",
        now: datetime | None = None,
    ) -> SignedCheckout:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise InvalidInput("amount must be a positive number")
        if not math.isfinite(amount) or amount <= 0:
            raise InvalidInput("amount must be a positive number")
        if not (order_info or "").strip() or not (client_ip or "").strip():
            raise InvalidInput("client_ip and order_info are required")
        locale = locale or "vn"
        if locale not in ALLOWED_LOCALES:
            raise InvalidInput(f"locale must be one of {', '.join(ALLOWED_LOCALES)}")
        amount_minor = int(round(amount)) * 100
        if amount_minor <= 0:
            raise InvalidInput("amount must be a positive number")

        cfg = self.config
        now = now or datetime.now(timezone.utc)
        create_date = format_vn_date(now)
        expire_date = format_vn_date(now + timedelta(minutes=cfg.expire_minutes))

        fields = {
            "vnp_Version": cfg.version,
            "vnp_Command": cfg.command,
            "vnp_TmnCode": cfg.tmn_code,
            "vnp_Amount": str(amount_minor),
            "vnp_CurrCode": cfg.curr_code,
            "vnp_TxnRef": correlation_key or generate_reference(create_date),
            "vnp_OrderInfo": order_info,
            "vnp_OrderType": order_type or "other",
            "vnp_Locale": locale,
            "vnp_ReturnUrl": cfg.return_url,
            "vnp_IpAddr": client_ip,
            "vnp_CreateDate": create_date,
            "vnp_ExpireDate": expire_date,
        }
        if bank_code:
            fields["vnp_BankCode"] = bank_code

        query = canonicalize(fields)
        secure_hash = sign(cfg.hash_secret, query)
        fields = dict(sorted(fields.items()))
        fields[HASH_FIELD] = secure_hash
        url = f"{cfg.pay_url}?{query}&{urlencode({HASH_FIELD: secure_hash})}"
        log.info("VNPay checkout built: txn_ref=%s amount=%s", fields["vnp_TxnRef"], amount_minor)
        return SignedCheckout(url=url, fields=fields)

    def verify(self, raw_fields: Mapping[str, object] | None, context: VerifyContext = VerifyContext.RETURN) -> VerifyResult:
        """İmza kontrolü. Hatalı/eksik girdide exception fırlatmaz, is_valid=False döner."""
        context = VerifyContext(context)
        fields = normalize_fields(raw_fields)
        provided = fields.pop(HASH_FIELD, "")
        fields.pop(HASH_TYPE_FIELD, None)
        code = fields.get(context.code_field, "")

        if not provided:
            return VerifyResult(False, code, fields, "Missing signature")
        expected = sign(self.config.hash_secret, canonicalize(fields))
        is_valid = hmac.compare_digest(expected.lower().encode("utf-8"), provided.strip().lower().encode("utf-8"))
        if not is_valid:
            log.warning("VNPay signature mismatch: txn_ref=%s", fields.get("vnp_TxnRef"))
            return VerifyResult(False, code, fields, "Invalid signature")
        return VerifyResult(True, code, fields, describe_code(code))
