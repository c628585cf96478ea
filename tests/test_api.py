import json
from decimal import Decimal

from conftest import (
    ADMIN_HEADERS, API_HEADERS, auth_headers, make_artist, make_planner, make_service, make_user, reload,
)
from stagebook.db import end_implicit_transaction
from stagebook.models import Artist, Booking
from stagebook.services.wallet import WalletOwner, credit

SLOT = {"start_at": "2030-06-01T09:00:00Z", "end_at": "2030-06-02T11:00:00Z"}


async def _bookable(session):
    client_user = await make_user(session)
    artist_user, artist = await make_artist(session)
    service = await make_service(session, artist, unit="day", price_for_user="1000", advance="200")
    return client_user, artist_user, artist, service


async def test_health_is_open(client):
    r = await client.get("/health", headers={"X-API-Key": ""})
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


async def test_api_key_is_required(client):
    r = await client.get("/api/services", headers={"X-API-Key": "wrong"})
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Invalid or missing API key"}


async def test_admin_routes_need_the_admin_key(client):
    r = await client.get("/api/admin/users")
    assert r.status_code == 401
    assert r.json()["message"] == "admin auth required"

    r = await client.get("/api/admin/users", headers=ADMIN_HEADERS)
    assert r.status_code == 200
    assert r.json()["success"] is True


async def test_request_validation_is_a_400_envelope(client):
    r = await client.post("/api/auth/otp/request", json={"channel": "fax", "destination": "12345"})
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["message"].startswith("channel:")


async def test_unknown_route_uses_the_envelope(client):
    r = await client.get("/api/nothing-here")
    assert r.status_code == 404
    assert r.json() == {"success": False, "message": "Not Found"}


async def test_bearer_token_is_required(client):
    r = await client.get("/api/user/profile")
    assert r.status_code == 401
    r = await client.get("/api/user/profile", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid token"


async def test_quote_endpoint(client, session):
    _, _, _, service = await _bookable(session)
    r = await client.get(f"/api/services/{service.id}/quote", params={
        "start": "2030-06-01T09:00:00+00:00", "end": "2030-06-02T11:00:00+00:00",
    })
    assert r.status_code == 200
    assert r.json()["data"] == {
        "unit": "day", "units": 2, "price_per_unit": 1000.0, "total_price": 2000.0, "advance": 400.0,
    }

    r = await client.get(f"/api/services/{service.id}/quote", params={
        "start": "2030-06-02T11:00:00Z", "end": "2030-06-01T09:00:00Z",
    })
    assert r.status_code == 400


async def test_booking_then_conflict_with_details(client, session):
    client_user, _, artist, service = await _bookable(session)
    body = {"artist_id": artist.id, "service_id": service.id, **SLOT}

    r = await client.post("/api/bookings", json=body, headers=auth_headers(client_user))
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["booking"]["status"] == "pending"
    assert data["order"]["amount"] == 400.0

    r = await client.post("/api/bookings", json=body, headers=auth_headers(client_user))
    assert r.status_code == 409
    conflict = r.json()
    assert conflict["success"] is False
    assert [c["id"] for c in conflict["data"]] == [data["booking"]["id"]]


async def test_artist_cannot_block_over_a_booking(client, session):
    client_user, artist_user, artist, service = await _bookable(session)
    await client.post("/api/bookings", json={"artist_id": artist.id, "service_id": service.id, **SLOT},
                      headers=auth_headers(client_user))

    r = await client.post("/api/calendar-blocks", json={**SLOT, "title": "holiday"}, headers=auth_headers(artist_user))
    assert r.status_code == 409

    r = await client.post("/api/calendar-blocks", json={
        "start_at": "2030-07-01T00:00:00Z", "end_at": "2030-07-02T00:00:00Z", "title": "holiday",
    }, headers=auth_headers(artist_user))
    assert r.status_code == 201
    block_id = r.json()["data"]["id"]

    r = await client.delete(f"/api/calendar-blocks/{block_id}", headers=auth_headers(artist_user))
    assert r.status_code == 204


async def test_gateway_webhook_credits_artist_once(client, session):
    client_user, _, artist, service = await _bookable(session)
    r = await client.post("/api/bookings", json={"artist_id": artist.id, "service_id": service.id, **SLOT},
                          headers=auth_headers(client_user))
    booking_id = r.json()["data"]["booking"]["id"]
    order_id = r.json()["data"]["order"]["id"]

    event = json.dumps({
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": order_id, "amount_received": 40000, "latest_charge": "ch_1"}},
    })
    # the gateway does not know the API key
    del client.headers["X-API-Key"]
    webhook_headers = {"stripe-signature": "valid", "content-type": "application/json"}
    first = await client.post("/api/bookings/webhook", content=event, headers=webhook_headers)
    second = await client.post("/api/bookings/webhook", content=event, headers=webhook_headers)

    assert first.status_code == 200
    assert first.json()["data"]["applied"] is True
    assert second.json()["data"]["applied"] is False

    booking = await reload(Booking, booking_id)
    assert booking.status == "confirmed"
    assert booking.payment_status == "advance"
    assert (await reload(Artist, artist.id)).wallet_balance == Decimal("400")


async def test_webhook_with_bad_signature_is_rejected(client):
    r = await client.post("/api/bookings/webhook", content=b"{}", headers={"stripe-signature": "forged"})
    assert r.status_code == 400
    assert r.json()["success"] is False


async def test_withdrawal_round_trip_through_admin(client, session):
    artist_user, artist = await make_artist(session)
    await end_implicit_transaction(session)
    async with session.begin():
        await credit(session, WalletOwner("artist", artist.id), Decimal("1000"), "adjustment")
    headers = auth_headers(artist_user)

    r = await client.post("/api/artist/withdrawals", json={"amount": 300, "upi_id": "meera@upi"}, headers=headers)
    assert r.status_code == 201
    first_id = r.json()["data"]["id"]

    r = await client.post("/api/artist/withdrawals", json={"amount": 800}, headers=headers)
    assert r.status_code == 400

    r = await client.get("/api/admin/withdrawals", params={"status": "pending"}, headers=ADMIN_HEADERS)
    assert [w["id"] for w in r.json()["data"]] == [first_id]

    r = await client.post(f"/api/admin/withdrawals/{first_id}/process", headers=ADMIN_HEADERS)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "processed"

    r = await client.post("/api/artist/withdrawals", json={"amount": 200}, headers=headers)
    second_id = r.json()["data"]["id"]
    r = await client.post(f"/api/admin/withdrawals/{second_id}/reject", json={}, headers=ADMIN_HEADERS)
    assert r.status_code == 400
    r = await client.post(f"/api/admin/withdrawals/{second_id}/reject", json={"admin_note": "wrong UPI id"},
                          headers=ADMIN_HEADERS)
    assert r.json()["data"]["status"] == "rejected"

    r = await client.get("/api/artist/wallet", headers=headers)
    wallet = r.json()["data"]
    assert wallet["balance"] == 700.0
    assert wallet["pending_amount"] == 0.0
    assert wallet["available_balance"] == 700.0


async def test_admin_commission_and_reconcile(client, session):
    _, artist = await make_artist(session)
    r = await client.post("/api/admin/commission", json={
        "artist_booking_commission": 10, "ticket_sell_commission": 5,
    }, headers=ADMIN_HEADERS)
    assert r.status_code == 201
    r = await client.get("/api/admin/commission", headers=ADMIN_HEADERS)
    assert r.json()["data"]["artist_booking_commission"] == 10.0

    r = await client.get(f"/api/admin/wallets/artist/{artist.id}/reconcile", headers=ADMIN_HEADERS)
    assert r.status_code == 200
    assert r.json()["data"]["drift"] == 0


async def test_default_client_headers_carry_the_api_key(client):
    assert client.headers["X-API-Key"] == API_HEADERS["X-API-Key"]


async def test_cancelling_a_pending_booking_cancels_its_order(client, session, gateway):
    client_user, _, artist, service = await _bookable(session)
    r = await client.post("/api/bookings", json={"artist_id": artist.id, "service_id": service.id, **SLOT},
                          headers=auth_headers(client_user))
    booking_id = r.json()["data"]["booking"]["id"]
    order_id = r.json()["data"]["order"]["id"]

    r = await client.post(f"/api/bookings/{booking_id}/cancel", headers=auth_headers(client_user))
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "cancelled"
    assert gateway.cancelled == [order_id]

    # cancelling again is a no-op and leaves the gateway alone
    r = await client.post(f"/api/bookings/{booking_id}/cancel", headers=auth_headers(client_user))
    assert r.status_code == 200
    assert gateway.cancelled == [order_id]


async def test_cancel_succeeds_when_the_gateway_refuses(client, session, gateway):
    client_user, _, artist, service = await _bookable(session)
    r = await client.post("/api/bookings", json={"artist_id": artist.id, "service_id": service.id, **SLOT},
                          headers=auth_headers(client_user))
    booking_id = r.json()["data"]["booking"]["id"]

    gateway.cancel_fails = True
    r = await client.post(f"/api/bookings/{booking_id}/cancel", headers=auth_headers(client_user))
    assert r.status_code == 200
    assert (await reload(Booking, booking_id)).status == "cancelled"


async def test_webhook_event_without_intent_id_is_a_400(client):
    event = json.dumps({"type": "payment_intent.succeeded", "data": {"object": {"amount_received": 100}}})
    r = await client.post("/api/bookings/webhook", content=event,
                          headers={"stripe-signature": "valid", "content-type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "Gateway event has no payment intent id"}


async def test_planner_edits_and_removes_ticket_types(client, session):
    planner_user, _ = await make_planner(session)
    headers = auth_headers(planner_user)
    r = await client.post("/api/planner/events", json={
        "title": "Monsoon Nights", "start_at": "2030-07-10T18:00:00Z", "end_at": "2030-07-10T23:00:00Z",
    }, headers=headers)
    event_id = r.json()["data"]["id"]
    r = await client.post(f"/api/planner/events/{event_id}/ticket-types",
                          json={"title": "General", "price": 250, "quantity": 50}, headers=headers)
    ticket_type_id = r.json()["data"]["id"]

    buyer = await make_user(session, email="ravi@example.com")
    r = await client.post("/api/user/tickets", json={
        "ticket_type_id": ticket_type_id, "quantity": 5, "buyer_name": "Ravi", "buyer_phone": "9876543210",
    }, headers=auth_headers(buyer))
    assert r.status_code == 201

    # a `sold` in the body is ignored
    r = await client.put(f"/api/planner/ticket-types/{ticket_type_id}",
                         json={"price": 300, "quantity": 40, "sold": 0}, headers=headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert (data["price"], data["quantity"], data["sold"]) == (300.0, 40, 5)

    r = await client.put(f"/api/planner/ticket-types/{ticket_type_id}", json={"quantity": 4}, headers=headers)
    assert r.status_code == 409
    r = await client.delete(f"/api/planner/ticket-types/{ticket_type_id}", headers=headers)
    assert r.status_code == 409

    r = await client.post(f"/api/planner/events/{event_id}/ticket-types",
                          json={"title": "Unsold", "price": 100, "quantity": 10}, headers=headers)
    unsold_id = r.json()["data"]["id"]
    r = await client.delete(f"/api/planner/ticket-types/{unsold_id}", headers=headers)
    assert r.status_code == 204
    r = await client.get(f"/api/planner/events/{event_id}/ticket-types", headers=headers)
    assert [t["id"] for t in r.json()["data"]] == [ticket_type_id]
