from dataclasses import dataclass
from typing import Optional

from fastapi import Cookie

from config import get_settings
from errors import NotAuthenticated, PermissionDenied
from models import RoleName
from security import decode_token


USER_COOKIE = "authToken"
ADMIN_COOKIE = "adminAuthToken"


@dataclass(frozen=True)
class Identity:
    user_id: int
    email: Optional[str] = None
    role: Optional[RoleName] = None


def _identity_from_claims(claims: dict) -> Identity:
    user_id = claims.get("userId")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise NotAuthenticated("Invalid token payload")
    email = claims.get("email")
    return Identity(
        user_id=user_id,
        email=email if isinstance(email, str) else None,
        role=RoleName.parse(claims["role"]) if claims.get("role") else None,
    )


def identity_from_user_token(token: Optional[str]) -> Identity:
    if not token:
        raise NotAuthenticated("Autenticación requerida")
    claims = decode_token(token, get_settings().jwt_secret)
    return _identity_from_claims(claims)


def identity_from_admin_token(token: Optional[str]) -> Identity:
    if not token:
        raise NotAuthenticated("Autenticación de administrador requerida")
    claims = decode_token(token, get_settings().jwt_admin_secret)
    identity = _identity_from_claims(claims)
    if not claims.get("role"):
        raise PermissionDenied("Rol de administrador requerido")
    if identity.role is None or not identity.role.is_admin:
        raise PermissionDenied("Acceso de administrador requerido")
    return identity


def current_user(auth_token: Optional[str] = Cookie(None, alias=USER_COOKIE)) -> Identity:
    return identity_from_user_token(auth_token)


def current_admin(
    admin_token: Optional[str] = Cookie(None, alias=ADMIN_COOKIE),
) -> Identity:
    return identity_from_admin_token(admin_token)


def current_super_admin(
    admin_token: Optional[str] = Cookie(None, alias=ADMIN_COOKIE),
) -> Identity:
    identity = identity_from_admin_token(admin_token)
    if not identity.role.is_super_admin:
        raise PermissionDenied("Acceso de súper administrador requerido")
    return identity
