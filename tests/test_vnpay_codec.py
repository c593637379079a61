"""VNPay imza/doğrulama: round-trip, kurcalama tespiti, tarih ve tutar biçimi."""
import re
from datetime import datetime, timezone
from urllib.parse import parse_qsl, urlsplit

import pytest

from voltsub.core.config import GatewayConfig, Settings
from voltsub.core.errors import ConfigurationError, InvalidInput
from voltsub.services.vnpay import (
    VerifyContext,
    describe_code,
    resolve_outcome,
)


def _checkout(codec, **kwargs):
    params = {"amount": 99000, "order_info": "Subscription Basic - 1 Month #1", "client_ip": "127.0.0.1"}
    params.update(kwargs)
    return codec.build_checkout(**params)


def test_signed_checkout_verifies(codec):
    checkout = _checkout(codec)
    result = codec.verify(checkout.fields, VerifyContext.RETURN)
    assert result.is_valid is True
    assert "vnp_SecureHash" not in result.fields
    assert result.fields["vnp_TxnRef"] == checkout.correlation_key


def test_url_carries_the_same_signed_fields(codec):
    checkout = _checkout(codec, order_info="Pay sub 1")
    parts = urlsplit(checkout.url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == codec.config.pay_url
    assert "vnp_OrderInfo=Pay+sub+1" in parts.query
    assert dict(parse_qsl(parts.query)) == checkout.fields
    assert codec.verify(dict(parse_qsl(parts.query))).is_valid


def test_outbound_fields(codec):
    checkout = _checkout(codec, amount=10000.6, bank_code="NCB", locale="en")
    f = checkout.fields
    assert f["vnp_Amount"] == "1000100"
    assert f["vnp_Version"] == "2.1.0"
    assert f["vnp_Command"] == "pay"
    assert f["vnp_CurrCode"] == "VND"
    assert f["vnp_TmnCode"] == codec.config.tmn_code
    assert f["vnp_OrderType"] == "other"
    assert f["vnp_Locale"] == "en"
    assert f["vnp_BankCode"] == "NCB"
    assert f["vnp_ReturnUrl"] == codec.config.return_url
    assert "vnp_IpnUrl" not in f
    assert re.fullmatch(r"[0-9a-f]{128}", f["vnp_SecureHash"])


def test_dates_are_utc_plus_seven_and_expire_after_fifteen_minutes(codec):
    now = datetime(2026, 1, 15, 3, 0, 0, tzinfo=timezone.utc)
    f = _checkout(codec, now=now).fields
    assert f["vnp_CreateDate"] == "20260115100000"
    assert f["vnp_ExpireDate"] == "20260115101500"


def test_generated_reference_format(codec):
    f = _checkout(codec).fields
    assert re.fullmatch(r"\d{14}-[A-Z0-9]{8}", f["vnp_TxnRef"])
    assert f["vnp_TxnRef"].startswith(f["vnp_CreateDate"])


def test_explicit_correlation_key_is_used(codec):
    assert _checkout(codec, correlation_key="42").correlation_key == "42"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"amount": 0},
        {"amount": -5},
        {"amount": float("nan")},
        {"amount": float("inf")},
        {"amount": "100"},
        {"order_info": ""},
        {"client_ip": "  "},
        {"locale": "fr"},
    ],
)
def test_build_rejects_invalid_input(codec, kwargs):
    with pytest.raises(InvalidInput):
        _checkout(codec, **kwargs)


def test_tampered_signature_is_rejected(codec):
    fields = _checkout(codec).fields
    sig = fields["vnp_SecureHash"]
    fields["vnp_SecureHash"] = ("0" if sig[0] != "0" else "1") + sig[1:]
    assert codec.verify(fields).is_valid is False


def test_changed_value_is_rejected(codec):
    fields = _checkout(codec).fields
    fields["vnp_Amount"] = "100"
    assert codec.verify(fields).is_valid is False


def test_added_or_removed_field_is_rejected(codec):
    fields = _checkout(codec).fields
    added = dict(fields, vnp_Extra="1")
    removed = {k: v for k, v in fields.items() if k != "vnp_Locale"}
    assert codec.verify(added).is_valid is False
    assert codec.verify(removed).is_valid is False


def test_signature_comparison_is_case_insensitive_and_ignores_hash_type(codec):
    fields = _checkout(codec).fields
    fields["vnp_SecureHash"] = fields["vnp_SecureHash"].upper()
    fields["vnp_SecureHashType"] = "HmacSHA512"
    assert codec.verify(fields).is_valid is True


def test_verify_never_raises_on_malformed_input(codec):
    assert codec.verify(None).is_valid is False
    assert codec.verify({}).message == "Missing signature"
    assert codec.verify({"vnp_SecureHash": "zzé", "vnp_TxnRef": None}).is_valid is False


def test_list_values_collapse_to_first(codec, gateway_fields):
    fields = gateway_fields("7", 99000)
    raw = {k: [v, "ignored"] for k, v in fields.items()}
    assert codec.verify(raw).is_valid is True


def test_code_depends_on_context(codec, gateway_fields):
    fields = gateway_fields("7", 99000, response_code="24", transaction_status="02")
    assert codec.verify(fields, VerifyContext.RETURN).code == "24"
    assert codec.verify(fields, VerifyContext.IPN).code == "02"


@pytest.mark.parametrize(
    "code,is_valid,status",
    [
        ("00", True, "success"),
        ("00", False, "failed"),
        ("24", True, "cancelled"),
        ("51", True, "failed"),
        ("xx", True, "failed"),
    ],
)
def test_resolve_outcome(code, is_valid, status):
    assert resolve_outcome(code, is_valid).status == status


def test_describe_code():
    assert describe_code("51") == "Insufficient account balance"
    assert describe_code("42") == "unknown error (code 42)"


def test_gateway_config_reports_missing_fields():
    s = Settings(vnp_tmn_code="", vnp_hash_secret="", vnp_return_url="", vnp_ipn_url="")
    with pytest.raises(ConfigurationError) as exc:
        GatewayConfig.from_settings(s)
    for name in ("VNP_TMN_CODE", "VNP_HASH_SECRET", "VNP_RETURN_URL", "VNP_IPN_URL"):
        assert name in exc.value.message


def test_gateway_config_pay_url_depends_on_environment():
    base = {"vnp_tmn_code": "T", "vnp_hash_secret": "S", "vnp_return_url": "http://r", "vnp_ipn_url": "http://i"}
    assert "sandbox" in GatewayConfig.from_settings(Settings(**base)).pay_url
    live = GatewayConfig.from_settings(Settings(environment="production", **base))
    assert live.pay_url == "https://pay.vnpay.vn/vpcpay.html"
    with pytest.raises(Exception):
        live.tmn_code = "other"
