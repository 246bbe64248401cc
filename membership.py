"""
Membership lifecycle: application -> admin decision -> email verification.

A request only ever moves pending -> approved or pending -> rejected; both
decisions are conditional updates on status == "pending", so a second
decision on the same request is refused rather than overwriting the first.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from config import VERIFICATION_TOKEN_TTL_HOURS
from database import as_utc, create_document, db, get_documents, serialize, utcnow
from emails import send_approval_with_setup_email, send_rejection_email, send_welcome_email
from schemas import Member, MembershipApplication, MembershipRequest, Result
from security import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

NAME_MAX = 100
EMAIL_MAX = 254
SHORT_FIELD_MAX = 100
COMPANY_MAX = 200
TEXT_MAX = 500

INVALID_TOKEN = "Invalid or expired verification link"
SETUP_EMAIL_FAILED = "Member approved but failed to send setup email. You may need to send it manually."


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()[:limit]
    return value or None


def _oid(request_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(request_id)
    except (InvalidId, TypeError):
        return None


def _public(doc: dict) -> dict:
    out = serialize(doc)
    out.pop("verification_token", None)
    return out


def submit_application(payload: MembershipApplication) -> Result:
    email = normalize_email(payload.email)
    if not is_valid_email(email) or len(email) > EMAIL_MAX:
        return Result.fail("Please enter a valid email address")
    name = _clip(payload.name, NAME_MAX)
    if not name:
        return Result.fail("Name is required")

    fields = {"member_type": payload.member_type, "name": name, "email": email}
    if payload.member_type == "trade":
        fields.update(
            company=_clip(payload.company, COMPANY_MAX),
            role=_clip(payload.role, SHORT_FIELD_MAX),
            business_type=payload.business_type,
            monthly_volume=payload.monthly_volume,
        )
    else:
        fields.update(
            phone=_clip(payload.phone, SHORT_FIELD_MAX),
            message=_clip(payload.message, TEXT_MAX),
        )

    try:
        request_id = create_document("requests", MembershipRequest(**fields))
    except PyMongoError as exc:
        logger.error("Failed to store membership request for %s: %s", email, exc)
        return Result.fail(f"Failed to submit request: {exc}", 500)

    ok, error = send_welcome_email(email, name)
    if not ok:
        logger.warning("Welcome email to %s failed: %s", email, error)

    logger.info("Membership request %s submitted (%s)", request_id, payload.member_type)
    return Result.ok({"id": request_id})


def list_requests(status: Optional[str] = None) -> Result:
    filt = {"status": status} if status else {}
    try:
        docs = get_documents("requests", filt, sort=("created_at", -1))
    except PyMongoError as exc:
        return Result.fail(str(exc), 500)
    return Result.ok([_public(d) for d in docs])


def get_request(request_id: str) -> Result:
    oid = _oid(request_id)
    try:
        doc = db["requests"].find_one({"_id": oid}) if oid else None
    except PyMongoError as exc:
        return Result.fail(str(exc), 500)
    if not doc:
        return Result.fail("Request not found", 404)
    return Result.ok(_public(doc))


def _decide(request_id: str, changes: dict) -> Result:
    oid = _oid(request_id)
    if oid is None:
        return Result.fail("Request not found", 404)
    try:
        doc = db["requests"].find_one_and_update(
            {"_id": oid, "status": "pending"},
            {"$set": changes},
        )
    except PyMongoError as exc:
        return Result.fail(str(exc), 500)
    if doc is None:
        existing = db["requests"].find_one({"_id": oid})
        if not existing:
            return Result.fail("Request not found", 404)
        return Result.fail(f"Request has already been {existing.get('status')}", 409)
    doc.update(changes)
    return Result.ok(doc)


def _issue_token() -> tuple:
    return secrets.token_urlsafe(32), utcnow() + timedelta(hours=VERIFICATION_TOKEN_TTL_HOURS)


def approve_request(request_id: str) -> Result:
    token, expires_at = _issue_token()
    now = utcnow()
    result = _decide(request_id, {
        "status": "approved",
        "email_verified": False,
        "verification_token": token,
        "verification_expires_at": expires_at,
        "approved_at": now,
        "updated_at": now,
    })
    if not result.success:
        return result
    doc = result.data
    logger.info("Membership request %s approved", request_id)

    ok, error = send_approval_with_setup_email(doc["email"], doc["name"], token, VERIFICATION_TOKEN_TTL_HOURS)
    if not ok:
        logger.error("Setup email for request %s failed: %s", request_id, error)
        return Result.ok(_public(doc), warning=SETUP_EMAIL_FAILED)
    return Result.ok(_public(doc))


def reject_request(request_id: str, reason: Optional[str] = None) -> Result:
    reason = _clip(reason, TEXT_MAX) or ""
    result = _decide(request_id, {"status": "rejected", "rejection_reason": reason, "updated_at": utcnow()})
    if not result.success:
        return result
    doc = result.data
    logger.info("Membership request %s rejected", request_id)

    ok, error = send_rejection_email(doc["email"], doc["name"], reason or None)
    if not ok:
        logger.error("Rejection email for request %s failed: %s", request_id, error)
        return Result.ok(_public(doc), warning="Request rejected but the notification email failed to send.")
    return Result.ok(_public(doc))


def resend_verification(request_id: str) -> Result:
    """Rotate the verification token of an approved, unverified request and email it again."""
    oid = _oid(request_id)
    if oid is None:
        return Result.fail("Request not found", 404)
    token, expires_at = _issue_token()
    try:
        doc = db["requests"].find_one_and_update(
            {"_id": oid, "status": "approved", "email_verified": {"$ne": True}},
            {"$set": {"verification_token": token, "verification_expires_at": expires_at, "updated_at": utcnow()}},
        )
        if doc is None:
            if not db["requests"].find_one({"_id": oid}):
                return Result.fail("Request not found", 404)
            return Result.fail("Only approved, unverified requests can be re-sent a verification link", 409)
    except PyMongoError as exc:
        return Result.fail(str(exc), 500)

    ok, error = send_approval_with_setup_email(doc["email"], doc["name"], token, VERIFICATION_TOKEN_TTL_HOURS)
    if not ok:
        return Result.fail(f"Failed to send setup email: {error}", 502)
    return Result.ok({"id": request_id})


def verify_email(token: str) -> Result:
    if not token:
        return Result.fail(INVALID_TOKEN, 404)
    try:
        doc = db["requests"].find_one({"verification_token": token, "status": "approved"})
        if not doc:
            return Result.fail(INVALID_TOKEN, 404)
        expires_at = as_utc(doc.get("verification_expires_at"))
        if expires_at is None or expires_at < utcnow():
            return Result.fail(INVALID_TOKEN, 404)

        # Clearing the token in the same conditional update makes it single use.
        res = db["requests"].update_one(
            {"_id": doc["_id"], "verification_token": token},
            {
                "$set": {"email_verified": True, "updated_at": utcnow()},
                "$unset": {"verification_token": "", "verification_expires_at": ""},
            },
        )
    except PyMongoError as exc:
        logger.error("Email verification failed: %s", exc)
        return Result.fail("Unable to verify your email right now. Please try again.", 500)
    if res.modified_count == 0:
        return Result.fail(INVALID_TOKEN, 404)
    logger.info("Email verified for membership request %s", doc["_id"])
    return Result.ok({"email": doc["email"], "name": doc["name"]})


def get_approved_request(email: str) -> Optional[dict]:
    """Newest approved request for an email, preferring one whose email is verified."""
    docs = get_documents("requests", {"email": normalize_email(email), "status": "approved"},
                         sort=("created_at", -1))
    if not docs:
        return None
    verified = [d for d in docs if d.get("email_verified")]
    return (verified or docs)[0]


def ensure_member(request_doc: dict) -> dict:
    """Materialize the Member record for an approved request; a no-op when it exists."""
    email = normalize_email(request_doc["email"])
    now = utcnow()
    member = Member(
        email=email,
        name=request_doc.get("name") or email,
        company=request_doc.get("company"),
        role=request_doc.get("role"),
        approved_at=request_doc.get("approved_at") or request_doc.get("updated_at") or now,
        created_at=now,
    )
    db["members"].update_one(
        {"_id": email},
        {
            "$setOnInsert": member.model_dump(exclude={"last_login_at"}),
            "$set": {"last_login_at": now},
        },
        upsert=True,
    )
    return db["members"].find_one({"_id": email})
