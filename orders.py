"""
Cart, checkout and loyalty bookkeeping.

Points: 10 points = 1 currency unit of discount, 1 point earned per whole
unit of the discounted total. The profile's `loyalty_points` is the
authoritative balance; `users.loyalty_points` is a copy refreshed from it
after every change.
"""

import logging
import math
import time
from typing import List, Optional
from uuid import uuid4

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from accounts import get_or_create_profile
from activity import log_activity
from config import PRIMARY_CURRENCY, SECONDARY_CURRENCY, SECONDARY_EXCHANGE_RATE, UPI_ID
from database import create_document, db, get_documents, serialize, utcnow
from emails import send_order_confirmation_email
from schemas import CartItem, CheckoutRequest, Order, Payment, Result, Spice

logger = logging.getLogger(__name__)

POINTS_PER_UNIT = 10

SAMPLE_SPICES = [
    {
        "id": "saffron-kashmiri",
        "name": "Kashmiri Saffron",
        "description": "Hand-harvested crimson threads from the Kashmir Valley with an intensely aromatic, slightly sweet flavor.",
        "origin": "Kashmir, India",
        "price": 89.99,
        "weight": "1g",
    },
    {
        "id": "vanilla-tahitian",
        "name": "Tahitian Vanilla",
        "description": "Plump, moist pods with floral and fruity notes and a delicate cherry-chocolate undertone.",
        "origin": "Tahiti, French Polynesia",
        "price": 45.00,
        "weight": "2 pods",
    },
    {
        "id": "cardamom-guatemalan",
        "name": "Guatemalan Cardamom",
        "description": "Green pods with eucalyptus and camphor notes, hand-picked in the Guatemalan highlands.",
        "origin": "Guatemala",
        "price": 34.99,
        "weight": "50g",
    },
    {
        "id": "peppercorns-tellicherry",
        "name": "Tellicherry Black Pepper",
        "description": "Extra-bold peppercorns ripened longer on the vine, with citrus notes and deep, warm heat.",
        "origin": "Kerala, India",
        "price": 28.50,
        "weight": "100g",
    },
    {
        "id": "cinnamon-ceylon",
        "name": "Ceylon Cinnamon",
        "description": "True cinnamon with a delicate, sweet flavor. Hand-rolled quills of Cinnamomum verum.",
        "origin": "Sri Lanka",
        "price": 22.00,
        "weight": "50g",
    },
]


# ----------------- Catalog -----------------

def list_spices() -> list:
    docs = get_documents("spices")
    if not docs:
        return [dict(s) for s in SAMPLE_SPICES]
    return [serialize(d) for d in docs]


def find_spice(spice_id: str) -> Optional[dict]:
    doc = db["spices"].find_one({"_id": spice_id})
    if doc:
        return serialize(doc)
    if db["spices"].count_documents({}) == 0:
        return next((dict(s) for s in SAMPLE_SPICES if s["id"] == spice_id), None)
    return None


def seed_spices() -> Result:
    if db["spices"].count_documents({}) > 0:
        return Result.ok({"inserted": 0, "message": "Spices already exist"})
    for spice in SAMPLE_SPICES:
        doc = Spice(**spice).model_dump(exclude={"id"})
        db["spices"].insert_one({"_id": spice["id"], **doc, "created_at": utcnow()})
    return Result.ok({"inserted": len(SAMPLE_SPICES)})


# ----------------- Cart -----------------

def get_cart(user_id: str) -> List[dict]:
    doc = db["carts"].find_one({"_id": user_id})
    return list(doc.get("items", [])) if doc else []


def _save_cart(user_id: str, items: List[dict]):
    db["carts"].update_one(
        {"_id": user_id},
        {"$set": {"user_id": user_id, "items": items, "updated_at": utcnow()}},
        upsert=True,
    )


def _new_item(user_id: str, spice: dict, quantity: int) -> dict:
    return CartItem(
        id=f"{user_id}_{spice['id']}_{int(time.time() * 1000)}",
        spice_id=spice["id"],
        name=spice["name"],
        price=float(spice["price"]),
        quantity=quantity,
    ).model_dump()


def add_to_cart(user_id: str, spice_id: str) -> Result:
    items = get_cart(user_id)
    existing = next((i for i in items if i["spice_id"] == spice_id), None)
    if existing:
        existing["quantity"] += 1
    else:
        spice = find_spice(spice_id)
        if not spice:
            return Result.fail("Spice not found", 404)
        items.append(_new_item(user_id, spice, 1))
    _save_cart(user_id, items)
    return Result.ok(items)


def set_quantity(user_id: str, spice_id: str, quantity: int) -> Result:
    if quantity < 0:
        return Result.fail("Quantity cannot be negative")
    items = get_cart(user_id)
    existing = next((i for i in items if i["spice_id"] == spice_id), None)
    if quantity == 0:
        items = [i for i in items if i["spice_id"] != spice_id]
    elif existing:
        existing["quantity"] = quantity
    else:
        spice = find_spice(spice_id)
        if not spice:
            return Result.fail("Spice not found", 404)
        items.append(_new_item(user_id, spice, quantity))
    _save_cart(user_id, items)
    return Result.ok(items)


def remove_from_cart(user_id: str, spice_id: str) -> Result:
    return set_quantity(user_id, spice_id, 0)


def clear_cart(user_id: str):
    _save_cart(user_id, [])


# ----------------- Pricing -----------------

def compute_totals(items: List[dict], requested_points: int = 0, available_points: int = 0) -> dict:
    subtotal = round(sum(float(i["price"]) * int(i["quantity"]) for i in items), 2)
    cap = math.floor(round(subtotal * POINTS_PER_UNIT, 6))
    redeemed = max(0, min(int(requested_points), int(available_points), cap))
    discount = round(redeemed / POINTS_PER_UNIT, 2)
    total = round(subtotal - discount, 2)
    return {
        "subtotal": subtotal,
        "points_redeemed": redeemed,
        "discount": discount,
        "total": total,
        "points_earned": math.floor(round(total, 6)),
        "currency": PRIMARY_CURRENCY,
        "secondary_currency": SECONDARY_CURRENCY,
        "secondary_total": round(total * SECONDARY_EXCHANGE_RATE, 2),
    }


def quote(user: dict, requested_points: int = 0) -> Result:
    items = get_cart(user["id"])
    profile = get_or_create_profile(user["id"], user["email"], user.get("display_name"))
    totals = compute_totals(items, requested_points, profile.get("loyalty_points", 0))
    totals["available_points"] = profile.get("loyalty_points", 0)
    totals["items"] = items
    return Result.ok(totals)


# ----------------- Loyalty balance -----------------

def _redeem_points(user_id: str, points: int) -> bool:
    """Atomically take `points` from the balance; False when it would go negative."""
    doc = db["profiles"].find_one_and_update(
        {"_id": user_id, "loyalty_points": {"$gte": points}},
        {"$inc": {"loyalty_points": -points}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is not None:
        _project_balance(user_id, doc["loyalty_points"])
    return doc is not None


def _credit_points(user_id: str, points: int) -> int:
    doc = db["profiles"].find_one_and_update(
        {"_id": user_id},
        {"$inc": {"loyalty_points": points}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    _project_balance(user_id, doc["loyalty_points"])
    return doc["loyalty_points"]


def _project_balance(user_id: str, balance: int):
    try:
        db["users"].update_one({"_id": user_id}, {"$set": {"loyalty_points": balance}})
    except PyMongoError as exc:
        logger.warning("Unable to refresh loyalty projection for %s: %s", user_id, exc)


# ----------------- Checkout -----------------

def _oid(order_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(order_id)
    except (InvalidId, TypeError):
        return None


def _existing_order(user_id: str, key: Optional[str]) -> Optional[dict]:
    if not key:
        return None
    return db["orders"].find_one({"user_id": user_id, "idempotency_key": key})


def checkout(user: dict, payload: CheckoutRequest) -> Result:
    user_id = user["id"]
    previous = _existing_order(user_id, payload.idempotency_key)
    if previous:
        return Result.ok({"order": serialize(previous), "duplicate": True})

    items = get_cart(user_id)
    if not items:
        return Result.fail("Your cart is empty")

    profile = get_or_create_profile(user_id, user["email"], user.get("display_name"))
    totals = compute_totals(items, payload.redeem_points, profile.get("loyalty_points", 0))
    redeemed = totals["points_redeemed"]
    if redeemed and not _redeem_points(user_id, redeemed):
        return Result.fail("Not enough loyalty points", 409)

    order = Order(
        order_number=f"HOM-{uuid4().hex[:16].upper()}",
        user_id=user_id,
        user_email=user["email"],
        user_name=profile.get("display_name") or user["email"],
        items=items,
        subtotal=totals["subtotal"],
        discount=totals["discount"],
        total=totals["total"],
        loyalty_points_earned=totals["points_earned"],
        loyalty_points_used=redeemed,
        payment_method=payload.payment_method,
        currency=PRIMARY_CURRENCY,
        idempotency_key=payload.idempotency_key,
    )
    try:
        order_id = create_document("orders", order)
    except DuplicateKeyError:
        # Same idempotency key raced us; hand back the order that won.
        if redeemed:
            _credit_points(user_id, redeemed)
        previous = _existing_order(user_id, payload.idempotency_key)
        if previous:
            return Result.ok({"order": serialize(previous), "duplicate": True})
        return Result.fail("Failed to place order. Please try again.", 500)
    except PyMongoError as exc:
        logger.error("Order insert failed for %s: %s", user_id, exc)
        if redeemed:
            _credit_points(user_id, redeemed)
        return Result.fail("Failed to place order. Please try again.", 500)

    payment = Payment(
        payment_id=f"PAY-{uuid4().hex[:16].upper()}",
        order_id=order_id,
        order_number=order.order_number,
        user_id=user_id,
        user_email=user["email"],
        amount=order.total,
        currency=PRIMARY_CURRENCY,
        payment_method=payload.payment_method,
        upi_id=UPI_ID if payload.payment_method == "upi" else None,
    )
    try:
        create_document("payments", payment)
    except PyMongoError as exc:
        logger.error("Payment insert failed for order %s: %s", order.order_number, exc)
        db["orders"].delete_one({"_id": ObjectId(order_id)})
        if redeemed:
            _credit_points(user_id, redeemed)
        return Result.fail("Failed to place order. Please try again.", 500)

    balance = _credit_points(user_id, order.loyalty_points_earned)
    clear_cart(user_id)

    log_activity(user_id, user["email"], "order_placed", f"Placed order {order.order_number}",
                 {"order_id": order_id, "total": order.total})
    if redeemed:
        log_activity(user_id, user["email"], "points_redeemed", f"Redeemed {redeemed} points",
                     {"order_id": order_id, "points": redeemed})
    if order.loyalty_points_earned:
        log_activity(user_id, user["email"], "points_earned",
                     f"Earned {order.loyalty_points_earned} points",
                     {"order_id": order_id, "points": order.loyalty_points_earned})

    ok, error = send_order_confirmation_email(
        user["email"], order.user_name, order.order_number, items,
        order.total, order.loyalty_points_earned, order.discount,
    )
    if not ok:
        logger.warning("Order confirmation email for %s failed: %s", order.order_number, error)

    logger.info("Order %s placed by %s", order.order_number, user_id)
    saved = serialize(db["orders"].find_one({"_id": ObjectId(order_id)}))
    return Result.ok({
        "order": saved,
        "payment": payment.model_dump(),
        "loyalty_points": balance,
        "secondary_currency": SECONDARY_CURRENCY,
        "secondary_total": totals["secondary_total"],
    })


# ----------------- Orders & payments -----------------

ORDERS_UNAVAILABLE = "Unable to load orders. Please try again."
PAYMENT_UPDATE_FAILED = "Unable to update the payment. Please try again."


def list_orders(user_id: str) -> Result:
    try:
        docs = get_documents("orders", {"user_id": user_id}, sort=("created_at", -1))
    except PyMongoError as exc:
        logger.error("Listing orders for %s failed: %s", user_id, exc)
        return Result.fail(ORDERS_UNAVAILABLE, 500)
    return Result.ok([serialize(d) for d in docs])


def list_all_orders(payment_status: Optional[str] = None) -> Result:
    filt = {"payment_status": payment_status} if payment_status else {}
    try:
        docs = get_documents("orders", filt, sort=("created_at", -1))
    except PyMongoError as exc:
        logger.error("Listing orders failed: %s", exc)
        return Result.fail(ORDERS_UNAVAILABLE, 500)
    return Result.ok([serialize(d) for d in docs])


def mark_paid(user_id: str, order_id: str, transaction_id: Optional[str] = None) -> Result:
    """Member reports a manual payment; the operator still has to verify it."""
    changes = {"reported_paid_at": utcnow()}
    if transaction_id:
        changes["transaction_id"] = transaction_id.strip()
    try:
        res = db["payments"].update_one({"order_id": order_id, "user_id": user_id, "status": "pending"},
                                        {"$set": changes})
        if res.matched_count == 0:
            if not db["payments"].find_one({"order_id": order_id, "user_id": user_id}):
                return Result.fail("Order not found", 404)
            return Result.fail("Payment has already been processed", 409)
    except PyMongoError as exc:
        logger.error("Recording payment report for order %s failed: %s", order_id, exc)
        return Result.fail(PAYMENT_UPDATE_FAILED, 500)
    return Result.ok({"order_id": order_id, "status": "pending"})


def verify_payment(order_id: str, status: str, transaction_id: Optional[str] = None) -> Result:
    oid = _oid(order_id)
    if oid is None:
        return Result.fail("Order not found", 404)
    now = utcnow()
    changes = {"status": status, "verified_at": now}
    if transaction_id:
        changes["transaction_id"] = transaction_id.strip()
    payment_status = "confirmed" if status == "success" else "failed"
    try:
        payment = db["payments"].find_one_and_update(
            {"order_id": order_id, "status": "pending"},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if payment is None:
            if not db["payments"].find_one({"order_id": order_id}):
                return Result.fail("Order not found", 404)
            return Result.fail("Payment has already been processed", 409)
        db["orders"].update_one({"_id": oid}, {"$set": {"payment_status": payment_status, "updated_at": now}})
        order = db["orders"].find_one({"_id": oid})
    except PyMongoError as exc:
        logger.error("Payment verification for order %s failed: %s", order_id, exc)
        return Result.fail(PAYMENT_UPDATE_FAILED, 500)

    log_activity(payment["user_id"], payment["user_email"], f"payment_{payment_status}",
                 f"Payment {payment_status} for order {payment['order_number']}", {"order_id": order_id})
    return Result.ok(serialize(order))
