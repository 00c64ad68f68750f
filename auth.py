"""
Session authentication and role checks.

Sessions live in the `session` collection; the browser only holds an opaque
token in an http-only cookie. Deactivating a user ends their sessions on the
next request.
"""

import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from pymongo.errors import DuplicateKeyError
from werkzeug.security import check_password_hash, generate_password_hash

from config import Config
from database import create_document, require_db, to_object_id, utcnow
from logger import get_logger
from schemas import Session

logger = get_logger(__name__)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: Optional[str], password: str) -> bool:
    return bool(password_hash) and check_password_hash(password_hash, password)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": str(user["_id"]), "name": user["name"], "email": user["email"], "role": user["role"]}


def authenticate(email: str, password: str) -> Optional[Dict[str, Any]]:
    db = require_db()
    user = db["user"].find_one({"email": email.strip().lower(), "is_active": True})
    if user is None or not verify_password(user.get("password_hash"), password):
        return None
    return user


def start_session(user: Dict[str, Any]) -> str:
    token = secrets.token_urlsafe(32)
    session = Session(
        user_id=str(user["_id"]),
        token=token,
        role=user["role"],
        name=user["name"],
        email=user["email"],
        expires_at=utcnow() + timedelta(hours=Config.SESSION_TTL_HOURS),
    )
    create_document("session", session)
    return token


def end_session(token: Optional[str]) -> None:
    if token:
        require_db()["session"].delete_one({"token": token})


def get_current_user(request: Request) -> Dict[str, Any]:
    """Resolve the signed-in user from the session cookie, or answer 401."""
    token = request.cookies.get(Config.SESSION_COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated. Please sign in.")
    db = require_db()
    session = db["session"].find_one({"token": token})
    if session is None or session["expires_at"] < utcnow():
        raise HTTPException(status_code=401, detail="Not authenticated. Please sign in.")
    user = db["user"].find_one({"_id": to_object_id(session["user_id"]), "is_active": True})
    if user is None:
        db["session"].delete_many({"user_id": session["user_id"]})
        raise HTTPException(status_code=401, detail="Not authenticated. Please sign in.")
    return user


def require_roles(*roles: str):
    def checker(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="Access denied. Insufficient permissions.")
        return user

    return checker


def ensure_owner() -> Optional[str]:
    """
    Make sure exactly one owner account exists and matches the environment.

    Safe to run concurrently: the upsert is keyed on the owner role, so two
    runs converge on the same document. Returns the owner id, or None when
    OWNER_EMAIL / OWNER_PASSWORD are not set.
    """
    email, password = Config.OWNER_EMAIL, Config.OWNER_PASSWORD
    if not email or not password:
        logger.warning("[OWNER_SEED] OWNER_EMAIL / OWNER_PASSWORD not set, skipping owner seed")
        return None

    db = require_db()
    email = email.strip().lower()
    now = utcnow()
    try:
        db["user"].update_one(
            {"role": "owner"},
            {
                "$set": {"email": email, "name": Config.OWNER_NAME, "is_active": True, "updated_at": now},
                "$setOnInsert": {"password_hash": hash_password(password),
                                 "created_by": None, "created_at": now},
            },
            upsert=True,
        )
    except DuplicateKeyError:
        # a concurrent seed inserted the same owner first; anything else is a staff account on that e-mail
        if db["user"].find_one({"email": email, "role": "owner"}) is None:
            logger.error("[OWNER_SEED] %s already belongs to another user", email)
            raise

    owner = db["user"].find_one({"role": "owner"})
    if not verify_password(owner.get("password_hash"), password):
        db["user"].update_one({"_id": owner["_id"]}, {"$set": {"password_hash": hash_password(password)}})
        logger.info("[OWNER_SEED] Owner password updated")
    logger.info("[OWNER_SEED] Owner account ready: %s", email)
    return str(owner["_id"])
