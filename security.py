"""
Password hashing, bearer tokens and the identity gate for protected routes.
"""
import logging
from datetime import datetime, timezone

import bcrypt
import jwt
from bson.objectid import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import Database, get_db
from errors import ForbiddenError, UnauthorizedError
from settings import Settings

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash or over-long password
        return False


def create_token(payload: dict, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {**payload, "iat": now, "exp": now + settings.token_lifetime}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")


def issue_token(user: dict, settings: Settings) -> str:
    return create_token({"id": str(user["_id"]), "email": user["email"]}, settings)


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Resolve the bearer token to a stored user and attach it to request.state.user."""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Access denied. No token provided or invalid format.")
    try:
        payload = decode_token(credentials.credentials, settings)
    except UnauthorizedError as exc:
        logger.warning("Rejected bearer token on %s: %s", request.url.path, exc.message)
        raise
    try:
        user_id = ObjectId(str(payload.get("id")))
    except (InvalidId, TypeError):
        raise UnauthorizedError("Invalid token payload")
    user = db.users.find_one({"_id": user_id})
    if not user:
        raise UnauthorizedError("Invalid token - user not found.")
    request.state.user = user
    return user


def require_admin(
    user: dict = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
) -> dict:
    if settings.enforce_admin_role and user.get("role") != "admin":
        raise ForbiddenError("Admin only")
    return user
