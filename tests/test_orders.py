from bson import ObjectId

import database
import orders
from orders import _redeem_points, compute_totals

CART = [{"price": 10, "quantity": 2}, {"price": 5, "quantity": 1}]


def seed_cart(user_id, items):
    database.db["carts"].insert_one({"_id": user_id, "user_id": user_id, "items": items})


def cart_items():
    return [
        {"id": "a", "spice_id": "saffron-kashmiri", "name": "Kashmiri Saffron", "price": 10.0, "quantity": 2},
        {"id": "b", "spice_id": "cinnamon-ceylon", "name": "Ceylon Cinnamon", "price": 5.0, "quantity": 1},
    ]


def balance(user_id):
    return database.db["profiles"].find_one({"_id": user_id})["loyalty_points"]


def test_totals_with_redemption():
    totals = compute_totals(CART, requested_points=60, available_points=100)
    assert totals["subtotal"] == 25
    assert totals["points_redeemed"] == 60
    assert totals["discount"] == 6
    assert totals["total"] == 19
    assert totals["points_earned"] == 19


def test_redemption_is_capped():
    assert compute_totals(CART, 500, 100)["points_redeemed"] == 100
    assert compute_totals(CART, 500, 1000)["points_redeemed"] == 250
    assert compute_totals(CART, 500, 1000)["total"] == 0
    assert compute_totals(CART, -20, 100)["points_redeemed"] == 0
    fractional = compute_totals([{"price": 89.99, "quantity": 1}], 2000, 2000)
    assert fractional["points_redeemed"] == 899
    assert fractional["total"] == 0.09
    assert fractional["points_earned"] == 0


def test_secondary_currency_uses_static_rate():
    totals = compute_totals(CART)
    assert totals["secondary_currency"] == "INR"
    assert totals["secondary_total"] == 25 * 83.0


def test_cart_quantity_rules(client, member):
    _, headers = member
    assert client.post("/api/cart/items", json={"spice_id": "saffron-kashmiri"}, headers=headers).status_code == 200
    items = client.post("/api/cart/items", json={"spice_id": "saffron-kashmiri"}, headers=headers).json()["data"]
    assert len(items) == 1 and items[0]["quantity"] == 2

    items = client.put("/api/cart/items/cinnamon-ceylon", json={"quantity": 3}, headers=headers).json()["data"]
    assert [(i["spice_id"], i["quantity"]) for i in items] == [("saffron-kashmiri", 2), ("cinnamon-ceylon", 3)]

    items = client.put("/api/cart/items/saffron-kashmiri", json={"quantity": 0}, headers=headers).json()["data"]
    assert [i["spice_id"] for i in items] == ["cinnamon-ceylon"]

    assert client.put("/api/cart/items/cinnamon-ceylon", json={"quantity": -1},
                      headers=headers).status_code == 422
    assert client.post("/api/cart/items", json={"spice_id": "unobtainium"}, headers=headers).status_code == 404

    client.delete("/api/cart/items/cinnamon-ceylon", headers=headers)
    assert client.get("/api/cart", headers=headers).json()["items"] == []


def test_checkout_with_points(client, outbox, member):
    user, headers = member
    seed_cart(user["_id"], cart_items())

    quote = client.post("/api/checkout/quote", json={"redeem_points": 60}, headers=headers).json()["data"]
    assert quote["total"] == 19
    assert quote["available_points"] == 100

    res = client.post("/api/checkout", json={"redeem_points": 60}, headers=headers)
    assert res.status_code == 200
    data = res.json()["data"]
    order = data["order"]
    assert order["subtotal"] == 25
    assert order["discount"] == 6
    assert order["total"] == 19
    assert order["loyalty_points_used"] == 60
    assert order["loyalty_points_earned"] == 19
    assert order["payment_status"] == "pending"
    assert order["order_number"].startswith("HOM-")
    assert data["loyalty_points"] == 59

    assert balance(user["_id"]) == 59
    assert database.db["users"].find_one({"_id": user["_id"]})["loyalty_points"] == 59
    payment = database.db["payments"].find_one({"order_id": order["id"]})
    assert payment["status"] == "pending"
    assert payment["amount"] == 19
    assert database.db["carts"].find_one({"_id": user["_id"]})["items"] == []
    actions = {e["action"] for e in database.db["trail"].find({"user_id": user["_id"]})}
    assert actions == {"order_placed", "points_redeemed", "points_earned"}
    assert order["order_number"] in outbox[-1]["subject"]


def test_checkout_empty_cart_is_refused(client, member):
    _, headers = member
    res = client.post("/api/checkout", json={}, headers=headers)
    assert res.status_code == 400
    assert res.json()["detail"] == "Your cart is empty"
    assert database.db["orders"].count_documents({}) == 0


def test_checkout_survives_email_failure(client, failing_email, member):
    user, headers = member
    seed_cart(user["_id"], cart_items())
    assert client.post("/api/checkout", json={}, headers=headers).status_code == 200
    assert database.db["orders"].count_documents({}) == 1


def test_idempotency_key_prevents_duplicate_orders(client, outbox, member):
    user, headers = member
    seed_cart(user["_id"], cart_items())
    first = client.post("/api/checkout", json={"redeem_points": 10, "idempotency_key": "cart-1"}, headers=headers)
    database.db["carts"].update_one({"_id": user["_id"]}, {"$set": {"items": cart_items()}})
    retry = client.post("/api/checkout", json={"redeem_points": 10, "idempotency_key": "cart-1"}, headers=headers)

    assert retry.json()["data"]["duplicate"] is True
    assert retry.json()["data"]["order"]["id"] == first.json()["data"]["order"]["id"]
    assert database.db["orders"].count_documents({}) == 1
    assert database.db["payments"].count_documents({}) == 1
    assert balance(user["_id"]) == 100 - 10 + 24


def test_stale_concurrent_redemptions_cannot_overdraw(member_factory):
    user, _ = member_factory(email="twin@example.com", points=50)
    # Both callers read a balance of 50 and each try to redeem 40.
    assert _redeem_points(user["_id"], 40) is True
    assert _redeem_points(user["_id"], 40) is False
    assert balance(user["_id"]) == 10


def test_checkout_redeems_against_current_balance(client, member):
    user, headers = member
    seed_cart(user["_id"], cart_items())
    database.db["profiles"].update_one({"_id": user["_id"]}, {"$set": {"loyalty_points": 0}})
    res = client.post("/api/checkout", json={"redeem_points": 60}, headers=headers)
    assert res.status_code == 200
    assert res.json()["data"]["order"]["loyalty_points_used"] == 0
    assert balance(user["_id"]) == 25


def test_payment_verification_and_snapshot(client, outbox, member, admin_headers):
    user, headers = member
    seed_cart(user["_id"], cart_items())
    order = client.post("/api/checkout", json={}, headers=headers).json()["data"]["order"]

    client.post("/api/cart/items", json={"spice_id": "vanilla-tahitian"}, headers=headers)
    paid = client.post(f"/api/orders/{order['id']}/paid", json={"transaction_id": "UPI-778"}, headers=headers)
    assert paid.status_code == 200

    assert client.post(f"/api/admin/orders/{order['id']}/verify-payment", json={"status": "success"},
                       headers=headers).status_code == 403
    res = client.post(f"/api/admin/orders/{order['id']}/verify-payment", json={"status": "success"},
                      headers=admin_headers)
    assert res.status_code == 200
    confirmed = res.json()["data"]
    assert confirmed["payment_status"] == "confirmed"
    assert confirmed["items"] == order["items"]
    assert confirmed["total"] == order["total"]

    payment = database.db["payments"].find_one({"order_id": order["id"]})
    assert payment["status"] == "success"
    assert payment["transaction_id"] == "UPI-778"
    assert payment["verified_at"] is not None

    again = client.post(f"/api/admin/orders/{order['id']}/verify-payment", json={"status": "failed"},
                        headers=admin_headers)
    assert again.status_code == 409
    assert client.post(f"/api/orders/{order['id']}/paid", json={}, headers=headers).status_code == 409


def test_order_listings_and_activity(client, outbox, member, admin_headers):
    user, headers = member
    seed_cart(user["_id"], cart_items())
    client.post("/api/checkout", json={}, headers=headers)

    mine = client.get("/api/orders", headers=headers).json()["data"]
    assert len(mine) == 1
    pending = client.get("/api/admin/orders?payment_status=pending", headers=admin_headers).json()["data"]
    assert [o["id"] for o in pending] == [mine[0]["id"]]

    trail = client.get("/api/activity", headers=headers).json()
    assert trail and all(e["user_id"] == user["_id"] for e in trail)


def test_catalog_falls_back_to_samples_and_seeds(client, admin_headers):
    spices = client.get("/api/spices").json()
    assert {s["id"] for s in spices} >= {"saffron-kashmiri", "cinnamon-ceylon"}
    assert client.post("/api/seed", headers=admin_headers).json()["data"]["inserted"] == len(spices)
    assert client.post("/api/seed", headers=admin_headers).json()["data"]["inserted"] == 0
    assert len(client.get("/api/spices").json()) == len(spices)


def test_store_failures_are_reported_by_the_service(client, member, admin_headers, database_down):
    _, headers = member
    database_down(orders, database)

    res = client.get("/api/orders", headers=headers)
    assert res.status_code == 500
    assert res.json()["detail"] == "Unable to load orders. Please try again."
    assert client.get("/api/admin/orders", headers=admin_headers).status_code == 500

    res = client.post(f"/api/orders/{ObjectId()}/paid", json={}, headers=headers)
    assert res.status_code == 500
    assert res.json()["detail"] == "Unable to update the payment. Please try again."

    res = client.post(f"/api/admin/orders/{ObjectId()}/verify-payment", json={"status": "success"},
                      headers=admin_headers)
    assert res.status_code == 500
    assert res.json()["detail"] == "Unable to update the payment. Please try again."
