"""Ödeme uçları için IP bazlı rate limiting (SlowAPI)."""
from fastapi import Request

from slowapi import Limiter

from voltsub.core.config import settings

# Yeni ödeme linki üreten uçlar (checkout-url, subscriptions/payment, subscriptions/upgrade)
CHECKOUT_LIMIT = f"{settings.rate_limit_checkout_per_minute}/minute"
# Dönüş parametrelerini tekrar doğrulayan uçlar (check-payment-status)
STATUS_CHECK_LIMIT = f"{settings.rate_limit_per_minute}/minute"


def get_client_ip(request: Request) -> str:
    """İstemci IP: X-Forwarded-For'daki ilk adres, yoksa bağlantı adresi. vnp_IpAddr buradan gelir."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


limiter = Limiter(key_func=get_client_ip)
