import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
import database

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
hasher = PasswordHasher()

RESET_PURPOSE = "password_reset"


def serialize_doc(doc):
    """Make a Mongo document JSON friendly.

    `_id` becomes `id`, ObjectIds become strings and datetimes ISO strings,
    recursively through nested dicts and lists.
    """
    if doc is None:
        return doc
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = serialize_doc(v)
    return out


def public_user(doc) -> dict:
    user = serialize_doc(doc)
    user.pop("password", None)
    return user


def to_object_id(value) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def hash_password(password: str) -> str:
    return hasher.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def create_token(payload: dict, expires: Optional[timedelta] = None) -> str:
    exp = datetime.now(timezone.utc) + (expires or timedelta(hours=config.JWT_EXPIRES_HOURS))
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def create_access_token(user: dict) -> str:
    return create_token({"id": str(user["_id"]), "role": user.get("role", "user")})


def create_reset_token(email: str) -> str:
    return create_token(
        {"email": email, "purpose": RESET_PURPOSE},
        expires=timedelta(minutes=config.RESET_TOKEN_EXPIRES_MINUTES),
    )


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def _user_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]):
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    payload = decode_token(credentials.credentials)
    user_id = to_object_id(payload.get("id"))
    if user_id is None or payload.get("purpose"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = database.db["user"].find_one({"_id": user_id})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    """Resolve the bearer token to the stored user document (raw, with `_id`)."""
    return _user_from_credentials(credentials)


def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    if credentials is None:
        return None
    return _user_from_credentials(credentials)


def require_role(*roles: str):
    """Dependency factory: only callers with one of `roles` reach the handler."""
    def checker(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            logger.info("Role check failed for %s on %s", user.get("email"), roles)
            raise HTTPException(status_code=403, detail=f"Forbidden: {' or '.join(roles).capitalize()}s only")
        return user
    return checker


require_admin = require_role("admin")
