import hmac

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from voltsub.core.config import GatewayConfig, settings
from voltsub.core.database import get_db
from voltsub.core.security import decode_access_token
from voltsub.models import User
from voltsub.services.vnpay import VnpayCodec

security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token.")


def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    if user.is_banned:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account suspended.")
    return user


def get_codec(request: Request) -> VnpayCodec:
    """Lifespan'da kurulan codec; yoksa (örn. test) ayarlardan kurulur."""
    codec = getattr(request.app.state, "codec", None)
    if codec is None:
        codec = VnpayCodec(GatewayConfig.from_settings())
        request.app.state.codec = codec
    return codec


def _admin_secret_matches(provided: str | None, expected: str | None) -> bool:
    """Timing-safe karşılaştırma; detay sızdırmaz."""
    return hmac.compare_digest((provided or "").encode("utf-8"), (expected or "").encode("utf-8"))


def require_admin(
    x_admin_secret: str | None = Header(None, alias="X-Admin-Secret"),
) -> None:
    expected = (settings.admin_secret or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API is not configured (ADMIN_SECRET missing).")
    if not _admin_secret_matches(x_admin_secret, expected):
        raise HTTPException(status_code=403, detail="Forbidden.")
