import base64
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
from fastapi import Header, Request
from jose import JWTError, jwt

from storefront.config import Settings
from storefront.errors import BadRequest, NotFound, Unauthorized
from storefront.models import User, utcnow
from storefront.repository import Repository

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 26
SCOPE_AUTHENTICATION = "authentication"
RESET_ALGORITHM = "HS256"
BCRYPT_COST = 12


def generate_token() -> str:
    """16 random bytes, base32 without padding: always TOKEN_LENGTH chars."""
    return base64.b32encode(secrets.token_bytes(16)).decode().rstrip("=")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=BCRYPT_COST)).decode()


def password_matches(password_hash: str, password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # malformed stored hash
        return False


def authenticate(repository: Repository, settings: Settings, email: str, password: str) -> Tuple[str, datetime, User]:
    """Check credentials and issue a fresh bearer token."""
    try:
        user = repository.get_user_by_email(email)
    except NotFound:
        raise Unauthorized()

    if not user.password or not password_matches(user.password, password):
        raise Unauthorized()

    token = generate_token()
    expiry = utcnow() + timedelta(hours=settings.token_ttl_hours)
    repository.insert_token(hash_token(token), user, expiry, SCOPE_AUTHENTICATION)
    logger.info(f"Issued authentication token for user {user.id}")
    return token, expiry, user


def user_for_authorization_header(repository: Repository, authorization: Optional[str]) -> User:
    """Missing header, bad scheme, wrong length and unknown token are indistinguishable."""
    if not authorization:
        raise Unauthorized()

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise Unauthorized()

    token = parts[1]
    if len(token) != TOKEN_LENGTH:
        raise Unauthorized()

    try:
        return repository.get_user_for_token(hash_token(token))
    except NotFound:
        raise Unauthorized()


def verify_token(request: Request, authorization: Optional[str] = Header(None)) -> User:
    return user_for_authorization_header(request.app.state.repository, authorization)


def make_reset_token(settings: Settings, email: str) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=settings.reset_link_ttl_minutes)
    claims = {"sub": email, "scope": "password-reset", "exp": expires}
    return jwt.encode(claims, settings.secret_key, algorithm=RESET_ALGORITHM)


def make_reset_link(settings: Settings, email: str) -> str:
    return f"{settings.frontend_url}/reset-password?token={make_reset_token(settings, email)}"


def email_from_reset_token(settings: Settings, token: str) -> str:
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[RESET_ALGORITHM])
    except JWTError:
        raise BadRequest("invalid or expired link")

    if claims.get("scope") != "password-reset" or not claims.get("sub"):
        raise BadRequest("invalid or expired link")
    return claims["sub"]
