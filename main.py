import logging
import os
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import accounts
import membership
import orders
from activity import list_activity
from config import LOG_LEVEL, TRUSTED_PROXIES
from database import db, ensure_indexes
from schemas import (
    AddToCart,
    CheckoutRequest,
    EmailPayload,
    LinkRequest,
    MarkPaid,
    MembershipApplication,
    PasswordCreate,
    PasswordLogin,
    PaymentDecision,
    QuantityUpdate,
    QuoteRequest,
    RejectPayload,
    Result,
    TokenPayload,
)
from security import get_current_user, get_session, require_admin

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("muziris")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes()
    else:
        logger.warning("DATABASE_URL is not set; running without a database")
    yield


# App setup
app = FastAPI(title="House of Muziris API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PyMongoError)
async def database_error(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Something went wrong. Please try again."})


def unwrap(result: Result) -> Result:
    if not result.success:
        raise HTTPException(status_code=result.status_code, detail=result.error)
    return result


def client_ip(request: Request) -> str:
    peer = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and peer in TRUSTED_PROXIES:
        # The trusted proxy appends the address it saw; earlier hops are client supplied.
        return forwarded.split(",")[-1].strip() or peer
    return peer


# Routes
@app.get("/")
def root():
    return {"message": "House of Muziris API"}


@app.get("/test")
def test_database():
    try:
        collections = db.list_collection_names()
        return {"backend": "ok", "database": "ok", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {str(e)[:80]}"}


# Membership
@app.post("/api/membership/requests")
def submit_membership(payload: MembershipApplication):
    return unwrap(membership.submit_application(payload))


@app.get("/api/admin/requests")
def admin_requests(status: Optional[Literal["pending", "approved", "rejected"]] = None,
                   user=Depends(require_admin)):
    return unwrap(membership.list_requests(status))


@app.get("/api/admin/requests/{request_id}")
def admin_request(request_id: str, user=Depends(require_admin)):
    return unwrap(membership.get_request(request_id))


@app.post("/api/admin/requests/{request_id}/approve")
def admin_approve(request_id: str, user=Depends(require_admin)):
    logger.info("Admin %s approving request %s", user["email"], request_id)
    return unwrap(membership.approve_request(request_id))


@app.post("/api/admin/requests/{request_id}/reject")
def admin_reject(request_id: str, payload: RejectPayload, user=Depends(require_admin)):
    logger.info("Admin %s rejecting request %s", user["email"], request_id)
    return unwrap(membership.reject_request(request_id, payload.reason))


@app.post("/api/admin/requests/{request_id}/resend-verification")
def admin_resend_verification(request_id: str, user=Depends(require_admin)):
    return unwrap(membership.resend_verification(request_id))


# Auth
@app.post("/api/auth/verify-email")
def verify_email(payload: TokenPayload):
    return unwrap(membership.verify_email(payload.token))


@app.post("/api/auth/login/email")
def login_email(payload: EmailPayload):
    return unwrap(accounts.login_email_step(payload.email))


@app.post("/api/auth/login/password")
def login_password(payload: PasswordLogin):
    return unwrap(accounts.login_password_step(payload.email, payload.password, payload.confirm_password))


@app.post("/api/auth/password")
def create_password(payload: PasswordCreate, user=Depends(get_current_user)):
    return unwrap(accounts.create_password(user, payload.password, payload.confirm_password))


@app.post("/api/auth/magic-link")
def send_magic_link(payload: LinkRequest):
    return unwrap(accounts.send_member_sign_in_link(payload.email, payload.origin))


@app.post("/api/auth/magic-link/verify")
def verify_magic_link(payload: TokenPayload):
    return unwrap(accounts.verify_sign_in_link(payload.token))


@app.post("/api/auth/admin-link")
def admin_link(payload: LinkRequest, request: Request):
    return unwrap(accounts.send_admin_sign_in_link(payload.email, payload.origin, client_ip(request)))


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return {"id": user["id"], "email": user["email"], "name": user.get("display_name"), "role": user["role"]}


@app.post("/api/auth/logout")
def logout(session=Depends(get_session)):
    return unwrap(accounts.sign_out(session))


# Dashboard
@app.get("/api/dashboard/profile")
def dashboard_profile(user=Depends(get_current_user)):
    return unwrap(accounts.dashboard_profile(user))


@app.get("/api/spices")
def list_spices():
    return orders.list_spices()


@app.post("/api/seed")
def seed(user=Depends(require_admin)):
    return unwrap(orders.seed_spices())


# Cart
@app.get("/api/cart")
def get_cart(user=Depends(get_current_user)):
    return {"user_id": user["id"], "items": orders.get_cart(user["id"])}


@app.delete("/api/cart")
def clear_cart(user=Depends(get_current_user)):
    orders.clear_cart(user["id"])
    return {"user_id": user["id"], "items": []}


@app.post("/api/cart/items")
def add_to_cart(payload: AddToCart, user=Depends(get_current_user)):
    return unwrap(orders.add_to_cart(user["id"], payload.spice_id))


@app.put("/api/cart/items/{spice_id}")
def update_cart_item(spice_id: str, payload: QuantityUpdate, user=Depends(get_current_user)):
    return unwrap(orders.set_quantity(user["id"], spice_id, payload.quantity))


@app.delete("/api/cart/items/{spice_id}")
def remove_cart_item(spice_id: str, user=Depends(get_current_user)):
    return unwrap(orders.remove_from_cart(user["id"], spice_id))


# Checkout & orders
@app.post("/api/checkout/quote")
def checkout_quote(payload: QuoteRequest, user=Depends(get_current_user)):
    return unwrap(orders.quote(user, payload.redeem_points))


@app.post("/api/checkout")
def checkout(payload: CheckoutRequest, user=Depends(get_current_user)):
    return unwrap(orders.checkout(user, payload))


@app.get("/api/orders")
def my_orders(user=Depends(get_current_user)):
    return unwrap(orders.list_orders(user["id"]))


@app.post("/api/orders/{order_id}/paid")
def mark_paid(order_id: str, payload: MarkPaid, user=Depends(get_current_user)):
    return unwrap(orders.mark_paid(user["id"], order_id, payload.transaction_id))


@app.get("/api/activity")
def my_activity(limit: int = 50, user=Depends(get_current_user)):
    return list_activity(user["id"], limit)


# Admin orders
@app.get("/api/admin/orders")
def admin_orders(payment_status: Optional[Literal["pending", "confirmed", "failed"]] = None,
                 user=Depends(require_admin)):
    return unwrap(orders.list_all_orders(payment_status))


@app.post("/api/admin/orders/{order_id}/verify-payment")
def admin_verify_payment(order_id: str, payload: PaymentDecision, user=Depends(require_admin)):
    logger.info("Admin %s marking payment for %s as %s", user["email"], order_id, payload.status)
    return unwrap(orders.verify_payment(order_id, payload.status, payload.transaction_id))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
