"""
Credential store: registration, login and user management.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import Database, object_id, serialize_doc, utcnow
from errors import ConflictError, NotFoundError, UnauthorizedError
from schemas import LoginBody, RegisterBody, User, UserCreateBody, UserUpdateBody
from security import hash_password, issue_token, verify_password
from settings import Settings

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("firstName", "lastName", "email", "role", "createdAt", "updatedAt")


def public_user(user: dict) -> Dict[str, Any]:
    """The user as returned to clients; never includes the password hash."""
    out = {"id": str(user["_id"])}
    for field in PROFILE_FIELDS:
        if field in user:
            out[field] = user[field]
    return serialize_doc(out)


def _insert_user(db: Database, body: RegisterBody, role: str, settings: Settings) -> dict:
    if db.users.find_one({"email": body.email}):
        raise ConflictError("User with this email already exists")
    user = User(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        password=hash_password(body.password, settings.salt_rounds),
        role=role,
    )
    try:
        return db.create_document("user", user)
    except DuplicateKeyError:
        # lost a race with a concurrent registration
        raise ConflictError("User with this email already exists")


def register(db: Database, body: RegisterBody, settings: Settings) -> Dict[str, Any]:
    role = "admin" if body.email in settings.admin_emails else "customer"
    user = _insert_user(db, body, role, settings)
    logger.info("Registered user %s (%s)", user["_id"], role)
    return {"user": public_user(user), "token": issue_token(user, settings)}


def login(db: Database, body: LoginBody, settings: Settings) -> Dict[str, Any]:
    user = db.users.find_one({"email": body.email})
    if not user or not verify_password(body.password, user.get("password", "")):
        logger.warning("Failed login for %s", body.email)
        raise UnauthorizedError("Invalid email or password")
    return {"token": issue_token(user, settings), "user": public_user(user)}


# ----------------------- Administration -----------------------
def list_users(db: Database) -> List[Dict[str, Any]]:
    return [public_user(u) for u in db.get_documents("user")]


def get_user(db: Database, user_id: str) -> Dict[str, Any]:
    user = db.users.find_one({"_id": object_id(user_id, "user")})
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def create_user(db: Database, body: UserCreateBody, settings: Settings) -> Dict[str, Any]:
    user = _insert_user(db, body, body.role, settings)
    logger.info("Admin created user %s (%s)", user["_id"], body.role)
    return public_user(user)


def update_user(db: Database, user_id: str, body: UserUpdateBody, settings: Settings) -> Dict[str, Any]:
    oid = object_id(user_id, "user")
    update = body.model_dump(by_alias=True, exclude_none=True)
    if "password" in update:
        update["password"] = hash_password(update["password"], settings.salt_rounds)
    if "email" in update and db.users.find_one({"email": update["email"], "_id": {"$ne": oid}}):
        raise ConflictError("User with this email already exists")
    update["updatedAt"] = utcnow()
    user = db.users.find_one_and_update({"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER)
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def delete_user(db: Database, user_id: str) -> None:
    res = db.users.delete_one({"_id": object_id(user_id, "user")})
    if res.deleted_count == 0:
        raise NotFoundError("User not found")
    logger.info("Deleted user %s", user_id)


def current_profile(user: Optional[dict]) -> Dict[str, Any]:
    if not user:
        raise UnauthorizedError("User not found in request. Authentication required.")
    return public_user(user)
