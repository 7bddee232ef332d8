import hmac
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.auth.jwt import JwtError, decode_jwt, jwt_http_exception
from app.config import settings
from app.db.session import get_db
from app.services.admin_roles_service import has_privileged_role


@dataclass
class AuthContext:
    user_id: str
    email: str | None = None
    is_admin: bool = False


def _bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise jwt_http_exception("Missing bearer token")
    token = authorization.removeprefix("Bearer ").strip()
    if not token:
        raise jwt_http_exception("Missing bearer token")
    return token


def get_auth_context(authorization: str | None = Header(default=None)) -> AuthContext:
    token = _bearer_token(authorization)
    try:
        payload = decode_jwt(token, settings.jwt_secret)
    except JwtError as err:
        raise jwt_http_exception("Invalid JWT") from err

    email = payload.get("email")
    return AuthContext(
        user_id=payload["sub"].strip(),
        email=email if isinstance(email, str) else None,
    )


def require_admin(
    auth: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
) -> AuthContext:
    if not has_privileged_role(db, auth.user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    auth.is_admin = True
    return auth


def resolve_admin_flag(auth: AuthContext, db: Session) -> AuthContext:
    auth.is_admin = has_privileged_role(db, auth.user_id)
    return auth


def require_expiration_trigger(authorization: str | None = Header(default=None)) -> None:
    expected = settings.expiration_trigger_token.strip()
    if not expected:
        return
    token = _bearer_token(authorization)
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise jwt_http_exception("Invalid trigger token")
