import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config import get_settings
from errors import NotAuthenticated, ServerMisconfigured, ValidationFailed
from models import RoleName


ALGORITHM = "HS256"
SESSION_TOKEN_TTL = timedelta(days=7)
SESSION_COOKIE_MAX_AGE = 24 * 60 * 60
ACCESS_TOKEN_TTL = timedelta(minutes=15)
REFRESH_TOKEN_TTL = timedelta(days=7)
RESET_TOKEN_MAX_AGE = 60 * 60

PASSWORD_POLICY_MESSAGE = (
    "La contraseña debe tener al menos 8 caracteres, mayúscula, minúscula, "
    "número y carácter especial"
)
_PASSWORD_RE = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&#.])[A-Za-z\d@$!%*?&#.]{8,}$"
)
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def is_strong_password(password: str) -> bool:
    return bool(_PASSWORD_RE.match(password or ""))


def ensure_strong_password(password: str) -> None:
    if not is_strong_password(password):
        raise ValidationFailed(PASSWORD_POLICY_MESSAGE)


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def _require_secret(secret: Optional[str]) -> str:
    if not secret:
        raise ServerMisconfigured("Error de configuración del servidor")
    return secret


def _encode(claims: dict[str, Any], secret: Optional[str], ttl: timedelta) -> str:
    payload = dict(claims)
    payload["exp"] = datetime.now(timezone.utc) + ttl
    return jwt.encode(payload, _require_secret(secret), algorithm=ALGORITHM)


def create_session_token(user_id: int, email: str) -> str:
    return _encode(
        {"userId": user_id, "email": email},
        get_settings().jwt_secret,
        SESSION_TOKEN_TTL,
    )


def create_admin_token(user_id: int, email: str, role: RoleName) -> str:
    return _encode(
        {"userId": user_id, "email": email, "role": role.value},
        get_settings().jwt_admin_secret,
        SESSION_TOKEN_TTL,
    )


def generate_access_token(user_id: int, email: str) -> str:
    return _encode(
        {"userId": user_id, "email": email},
        get_settings().access_secret,
        ACCESS_TOKEN_TTL,
    )


def generate_refresh_token(user_id: int) -> str:
    return _encode(
        {"userId": user_id, "jti": secrets.token_hex(8)},
        get_settings().refresh_secret,
        REFRESH_TOKEN_TTL,
    )


def decode_token(token: str, secret: Optional[str]) -> dict[str, Any]:
    """Verify ``token`` against ``secret`` and return its claims.

    Expired and otherwise unverifiable tokens raise ``NotAuthenticated``;
    an unset secret raises ``ServerMisconfigured``.
    """
    key = _require_secret(secret)
    try:
        return jwt.decode(token, key, algorithms=[ALGORITHM])
    except ExpiredSignatureError as exc:
        raise NotAuthenticated("Token has expired") from exc
    except JWTError as exc:
        raise NotAuthenticated("Invalid token") from exc


def _reset_serializer() -> URLSafeTimedSerializer:
    secret = _require_secret(get_settings().reset_secret)
    return URLSafeTimedSerializer(secret, salt="password-reset")


def create_reset_token(user_id: int) -> str:
    return _reset_serializer().dumps({"u": user_id, "n": secrets.token_hex(8)})


def read_reset_token(token: str, max_age: int = RESET_TOKEN_MAX_AGE) -> int:
    try:
        data = _reset_serializer().loads(token, max_age=max_age)
    except (SignatureExpired, BadSignature) as exc:
        raise ValidationFailed("Token inválido o expirado") from exc
    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        raise ValidationFailed("Token inválido o expirado")
    return user_id
