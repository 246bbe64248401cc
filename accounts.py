"""
Sign-in flows for members and admins.

Members reach a session only through an approved request whose email has
been verified: either by password (created on first login) or by a
one-time sign-in link. Admins, listed in ADMIN_EMAILS, skip the
membership gate and sign in through the admin link.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pymongo.errors import DuplicateKeyError, PyMongoError

from config import ADMIN_LINK_RATE_LIMIT, ADMIN_LINK_RATE_WINDOW_SECONDS, SITE_URL
from database import db, serialize, utcnow
from emails import send_sign_in_link_email
from membership import ensure_member, get_approved_request
from ratelimit import hit
from schemas import Result, UserProfile
from security import (
    create_session_token,
    create_sign_in_link_token,
    decode_token,
    hash_password,
    is_admin_email,
    is_valid_email,
    normalize_email,
    password_policy_error,
    verify_password,
)

logger = logging.getLogger(__name__)

NOT_A_MEMBER = "This email is not registered as an approved member. Please apply for membership first."
NOT_VERIFIED = ("Please verify your email first. Check your inbox for the verification link "
                "we sent when your membership was approved.")
INVALID_CREDENTIALS = "Invalid email or password"
ADMIN_DENIED = "Access denied. This email is not authorized for admin access."
LINK_ACCOUNT_EXISTS = ("This account signs in with an email link. Sign in with a link first, "
                       "then create a password from your account.")


def _member_gate(email: str) -> Result:
    """Approved + verified check shared by every member sign-in path."""
    if not is_valid_email(email):
        return Result.fail("Please enter a valid email address")
    try:
        request_doc = get_approved_request(email)
    except PyMongoError as exc:
        return Result.fail(f"Unable to verify membership status: {exc}", 500)
    if not request_doc:
        return Result.fail(NOT_A_MEMBER, 403)
    if request_doc.get("email_verified") is not True:
        return Result.fail(NOT_VERIFIED, 403)
    return Result.ok(request_doc)


def _user_out(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "name": user.get("display_name"),
        "role": "admin" if is_admin_email(user["email"]) else "member",
    }


def _session(user: dict, redirect: str) -> Result:
    db["users"].update_one({"_id": user["_id"]}, {"$set": {"last_login_at": utcnow()}})
    return Result.ok({
        "access_token": create_session_token(user),
        "token_type": "bearer",
        "user": _user_out(user),
        "redirect": redirect,
    })


def get_user_by_email(email: str) -> Optional[dict]:
    return db["users"].find_one({"email": normalize_email(email)})


def sign_in_methods(email: str) -> list:
    user = get_user_by_email(email)
    if not user:
        return []
    methods = []
    if user.get("password_hash"):
        methods.append("password")
    if "emailLink" in user.get("providers", []):
        methods.append("emailLink")
    return methods


def _get_or_create_user(email: str, display_name: str, provider: str) -> dict:
    email = normalize_email(email)
    user = get_user_by_email(email)
    if user:
        if provider not in user.get("providers", []):
            db["users"].update_one({"_id": user["_id"]}, {"$addToSet": {"providers": provider}})
            user.setdefault("providers", []).append(provider)
        return user
    now = utcnow()
    user = {
        "_id": uuid4().hex,
        "email": email,
        "display_name": display_name,
        "password_hash": None,
        "providers": [provider],
        "loyalty_points": 0,
        "created_at": now,
        "updated_at": now,
    }
    db["users"].insert_one(user)
    return user


def get_or_create_profile(user_id: str, email: str, display_name: Optional[str] = None) -> dict:
    now = utcnow()
    profile = UserProfile(user_id=user_id, email=email, display_name=display_name or email.split("@")[0])
    db["profiles"].update_one(
        {"_id": user_id},
        {"$setOnInsert": {**profile.model_dump(), "created_at": now, "updated_at": now}},
        upsert=True,
    )
    return db["profiles"].find_one({"_id": user_id})


def mark_password_set(user: dict):
    get_or_create_profile(str(user["_id"]), user["email"], user.get("display_name"))
    db["profiles"].update_one({"_id": str(user["_id"])},
                              {"$set": {"has_set_password": True, "updated_at": utcnow()}})


def login_email_step(email: str) -> Result:
    email = normalize_email(email)
    gate = _member_gate(email)
    if not gate.success:
        return gate
    return Result.ok({"email": email, "has_password": "password" in sign_in_methods(email)})


def login_password_step(email: str, password: str, confirm_password: Optional[str] = None) -> Result:
    email = normalize_email(email)
    gate = _member_gate(email)
    if not gate.success:
        return gate
    request_doc = gate.data

    try:
        user = get_user_by_email(email)
        if user and user.get("password_hash"):
            if not verify_password(password, user["password_hash"]):
                return Result.fail(INVALID_CREDENTIALS, 401)
            ensure_member(request_doc)
            logger.info("Member %s signed in with password", user["_id"])
            return _session(user, "/dashboard")

        if user:
            # Passwordless identity: a password is only linked from its own session.
            return Result.fail(LINK_ACCOUNT_EXISTS, 409)

        # First login: the password is being created now.
        if confirm_password is None or confirm_password != password:
            return Result.fail("Passwords do not match")
        policy_error = password_policy_error(password)
        if policy_error:
            return Result.fail(policy_error)
        user = _get_or_create_user(email, request_doc.get("name") or email, "password")
        password_hash = hash_password(password)
        db["users"].update_one({"_id": user["_id"]},
                               {"$set": {"password_hash": password_hash, "updated_at": utcnow()}})
        user["password_hash"] = password_hash
        ensure_member(request_doc)
        mark_password_set(user)
    except PyMongoError as exc:
        logger.error("Password sign-in for %s failed: %s", email, exc)
        return Result.fail(str(exc), 500)

    logger.info("Member %s created a password", user["_id"])
    return _session(user, "/dashboard")


def create_password(user: dict, password: str, confirm_password: str) -> Result:
    """Attach (or replace) the password credential of an already signed-in user."""
    policy_error = password_policy_error(password, confirm_password)
    if policy_error:
        return Result.fail(policy_error)
    db["users"].update_one(
        {"_id": user["id"]},
        {"$set": {"password_hash": hash_password(password), "updated_at": utcnow()},
         "$addToSet": {"providers": "password"}},
    )
    mark_password_set({"_id": user["id"], "email": user["email"], "display_name": user.get("display_name")})
    return Result.ok({"has_set_password": True})


def _link_for(token: str, origin: Optional[str]) -> str:
    return f"{(origin or SITE_URL).rstrip('/')}/auth/verify?token={token}"


def send_member_sign_in_link(email: str, origin: Optional[str] = None) -> Result:
    email = normalize_email(email)
    gate = _member_gate(email)
    if not gate.success:
        return gate
    ok, error = send_sign_in_link_email(email, _link_for(create_sign_in_link_token(email), origin))
    if not ok:
        return Result.fail("Failed to send email", 500)
    return Result.ok()


def send_admin_sign_in_link(email: Optional[str], origin: Optional[str], client_ip: str) -> Result:
    email = normalize_email(email)
    if not email or not is_valid_email(email):
        return Result.fail("A valid email is required", 400)
    if not hit("admin-link", client_ip, ADMIN_LINK_RATE_LIMIT, ADMIN_LINK_RATE_WINDOW_SECONDS):
        logger.warning("Admin link rate limit exceeded for %s", client_ip)
        return Result.fail("Too many requests. Please try again later.", 429)
    if not is_admin_email(email):
        return Result.fail(ADMIN_DENIED, 403)

    ok, error = send_sign_in_link_email(email, _link_for(create_sign_in_link_token(email), origin))
    if not ok:
        logger.error("Admin sign-in link email failed: %s", error)
        return Result.fail("Failed to send email", 500)
    return Result.ok()


def verify_sign_in_link(token: str) -> Result:
    payload = decode_token(token, purpose="sign_in_link")
    if payload is None:
        return Result.fail("Invalid or expired sign-in link", 401)
    email = normalize_email(payload["sub"])

    if is_admin_email(email):
        if not _consume_link(payload):
            return Result.fail("This sign-in link has already been used", 401)
        user = _get_or_create_user(email, email.split("@")[0], "emailLink")
        logger.info("Admin %s signed in with link", user["_id"])
        return _session(user, "/admin")

    gate = _member_gate(email)
    if not gate.success:
        return gate
    if not _consume_link(payload):
        return Result.fail("This sign-in link has already been used", 401)
    request_doc = gate.data
    user = _get_or_create_user(email, request_doc.get("name") or email, "emailLink")
    ensure_member(request_doc)
    logger.info("Member %s signed in with link", user["_id"])
    return _session(user, "/member")


def _consume_link(payload: dict) -> bool:
    try:
        db["usedlinks"].insert_one({
            "_id": payload["jti"],
            "expires_at": datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        })
    except DuplicateKeyError:
        return False
    return True


def sign_out(session: dict) -> Result:
    db["revokedtokens"].update_one(
        {"_id": session["jti"]},
        {"$setOnInsert": {"expires_at": datetime.fromtimestamp(session["exp"], tz=timezone.utc)}},
        upsert=True,
    )
    return Result.ok()


def dashboard_profile(user: dict) -> Result:
    try:
        profile = get_or_create_profile(user["id"], user["email"], user.get("display_name"))
    except PyMongoError as exc:
        return Result.fail(str(exc), 500)
    return Result.ok(serialize(profile))
