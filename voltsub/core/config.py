from dataclasses import dataclass
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigurationError

# .env proje kökünde: voltsub/core/config.py -> voltsub/core -> voltsub -> kök
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

VNPAY_SANDBOX_URL = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
VNPAY_LIVE_URL = "https://pay.vnpay.vn/vpcpay.html"


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./voltsub.db"
    # Tek bir veritabanı çağrısı için üst sınır (saniye)
    db_timeout_seconds: int = 10
    # CORS: virgülle ayrılmış origin listesi
    cors_origins: str = "*"
    # IP başına dakikada max istek (rate limit)
    rate_limit_per_minute: int = 60
    # Ödeme linki oluşturma için ayrı limit (testte yüksek tutulabilir)
    rate_limit_checkout_per_minute: int = 10
    environment: str = "development"
    admin_secret: str = ""
    # Ödeme sonrası kullanıcının yönlendirileceği frontend
    frontend_url: str = "http://localhost:5173"
    # VNPay (Vietnam): redirect + IPN, HMAC-SHA512 imza
    vnp_tmn_code: str = ""
    vnp_hash_secret: str = ""
    vnp_pay_url: str = ""              # Boşsa ortama göre sandbox/canlı URL
    vnp_return_url: str = ""           # Tarayıcı dönüşü, örn. https://siteniz.com/vnpay/return
    vnp_ipn_url: str = ""              # Sunucudan sunucuya bildirim, örn. https://api.siteniz.com/vnpay/ipn
    vnp_version: str = "2.1.0"
    vnp_command: str = "pay"
    vnp_curr_code: str = "VND"
    checkout_expire_minutes: int = 15
    # Plan tablosu boşsa varsayılan 9 plan eklenir
    seed_default_plans: bool = True

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("vnp_tmn_code", "vnp_hash_secret", "admin_secret", mode="before")
    @classmethod
    def strip_secrets(cls, v: str | None) -> str:
        """Boşluk/yanlış kopya kaynaklı imza hatalarını azaltır."""
        return (v or "").strip()

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


settings = Settings()


@dataclass(frozen=True)
class GatewayConfig:
    """VNPay bağlantı bilgileri. Başlangıçta bir kez kurulur, sonra değişmez."""

    tmn_code: str
    hash_secret: str
    pay_url: str
    return_url: str
    ipn_url: str
    version: str = "2.1.0"
    command: str = "pay"
    curr_code: str = "VND"
    expire_minutes: int = 15

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> "GatewayConfig":
        s = s or settings
        required = {
            "VNP_TMN_CODE": s.vnp_tmn_code,
            "VNP_HASH_SECRET": s.vnp_hash_secret,
            "VNP_RETURN_URL": s.vnp_return_url,
            "VNP_IPN_URL": s.vnp_ipn_url,
        }
        missing = [name for name, value in required.items() if not (value or "").strip()]
        if missing:
            raise ConfigurationError(f"Missing VNPay configuration: {', '.join(missing)}")
        pay_url = (s.vnp_pay_url or "").strip() or (VNPAY_LIVE_URL if s.is_production else VNPAY_SANDBOX_URL)
        return cls(
            tmn_code=s.vnp_tmn_code,
            hash_secret=s.vnp_hash_secret,
            pay_url=pay_url,
            return_url=s.vnp_return_url.strip(),
            ipn_url=s.vnp_ipn_url.strip(),
            version=s.vnp_version,
            command=s.vnp_command,
            curr_code=s.vnp_curr_code,
            expire_minutes=s.checkout_expire_minutes,
        )


def is_gateway_configured() -> bool:
    """VNPay için zorunlu alanlar dolu mu?"""
    try:
        GatewayConfig.from_settings()
    except ConfigurationError:
        return False
    return True
