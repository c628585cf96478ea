import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import make_planner, make_user, reload, set_commission
from stagebook.errors import Conflict, Forbidden, NotFound, ValidationError
from stagebook.models import Event, PlannerProfile, Ticket, TicketType
from stagebook.services.tickets import (
    buy_ticket, create_event, create_ticket_type, delete_ticket_type, expire_past_events, scan_ticket,
    update_ticket_type,
)

EVENT_START = datetime(2030, 12, 20, 18, 0, tzinfo=timezone.utc)
EVENT_END = EVENT_START + timedelta(hours=5)


async def _event_with_tickets(session, quantity=4, price="100"):
    _, planner = await make_planner(session)
    event = await create_event(session, planner, "Winter Gala", EVENT_START, EVENT_END, venue="Hall A")
    ticket_type = await create_ticket_type(session, planner, event.id, "General", Decimal(price), quantity)
    return planner, event, ticket_type


async def test_buying_issues_ticket_and_counts_sold(session):
    buyer = await make_user(session)
    _, event, ticket_type = await _event_with_tickets(session)

    ticket = await buy_ticket(session, buyer.id, ticket_type.id, 3, "Ravi", "9876543210")
    assert ticket.persons == 3
    assert ticket.scanned_persons == 0
    assert ticket.is_valid
    payload = json.loads(ticket.qr_payload)
    assert payload["ticket_id"] == ticket.id
    assert payload["event_id"] == event.id
    assert payload["persons"] == 3
    assert (await reload(TicketType, ticket_type.id)).sold == 3


async def test_oversell_is_rejected_and_sold_unchanged(session):
    buyer = await make_user(session)
    _, _, ticket_type = await _event_with_tickets(session, quantity=4)
    buyer_id, ticket_type_id = buyer.id, ticket_type.id
    await buy_ticket(session, buyer_id, ticket_type_id, 3, "Ravi", "9876543210")

    with pytest.raises(Conflict):
        await buy_ticket(session, buyer_id, ticket_type_id, 2, "Asha", "9876500000")
    assert (await reload(TicketType, ticket_type_id)).sold == 3

    await buy_ticket(session, buyer_id, ticket_type_id, 1, "Asha", "9876500000")
    assert (await reload(TicketType, ticket_type_id)).sold == 4


async def test_invalid_purchases(session):
    _, _, ticket_type = await _event_with_tickets(session)
    with pytest.raises(ValidationError):
        await buy_ticket(session, None, ticket_type.id, 0, "Ravi", "9876543210")
    with pytest.raises(ValidationError):
        await buy_ticket(session, None, ticket_type.id, 1, "", "9876543210")
    with pytest.raises(NotFound):
        await buy_ticket(session, None, 999, 1, "Ravi", "9876543210")


async def test_sales_window_is_enforced(session):
    _, planner = await make_planner(session)
    event = await create_event(session, planner, "Gala", EVENT_START, EVENT_END)
    later = await create_ticket_type(
        session, planner, event.id, "Late", Decimal("50"), 10,
        sales_start=datetime.now(timezone.utc) + timedelta(days=30), sales_end=EVENT_START,
    )
    with pytest.raises(ValidationError):
        await buy_ticket(session, None, later.id, 1, "Ravi", "9876543210")


async def test_ticket_sales_credit_planner_net_of_commission(session):
    planner, _, ticket_type = await _event_with_tickets(session, quantity=10, price="100")
    await set_commission(session, ticket_pct="5")
    await buy_ticket(session, None, ticket_type.id, 3, "Ravi", "9876543210")
    # 300 gross, 15 commission
    assert (await reload(PlannerProfile, planner.id)).wallet_balance == Decimal("285")


async def test_free_tickets_credit_nothing(session):
    planner, _, ticket_type = await _event_with_tickets(session, price="0")
    await buy_ticket(session, None, ticket_type.id, 2, "Ravi", "9876543210")
    assert (await reload(PlannerProfile, planner.id)).wallet_balance == Decimal("0")


async def test_only_the_owner_can_add_ticket_types(session):
    _, event, _ = await _event_with_tickets(session)
    _, intruder = await make_planner(session, email="intruder@example.com")
    with pytest.raises(Forbidden):
        await create_ticket_type(session, intruder, event.id, "VIP", Decimal("500"), 5)


async def test_scanning_never_exceeds_persons(session):
    planner, _, ticket_type = await _event_with_tickets(session)
    ticket = await buy_ticket(session, None, ticket_type.id, 3, "Ravi", "9876543210")
    planner_id, ticket_id = planner.id, ticket.id

    first = await scan_ticket(session, planner, ticket_id, persons=2)
    assert first.scanned_persons == 2
    assert not first.scanned

    with pytest.raises(Conflict):
        await scan_ticket(session, planner, ticket_id, persons=2)

    # the failed scan rolled back and expired the session's copy of the planner
    planner = await reload(PlannerProfile, planner_id)
    last = await scan_ticket(session, planner, ticket_id, persons=1)
    assert last.scanned_persons == 3
    assert last.scanned

    with pytest.raises(Conflict):
        await scan_ticket(session, planner, ticket_id, persons=1)
    assert (await reload(Ticket, ticket_id)).scanned_persons == 3


async def test_other_planners_cannot_scan(session):
    _, _, ticket_type = await _event_with_tickets(session)
    ticket = await buy_ticket(session, None, ticket_type.id, 1, "Ravi", "9876543210")
    _, intruder = await make_planner(session, email="intruder@example.com")
    with pytest.raises(Forbidden):
        await scan_ticket(session, intruder, ticket.id)


async def test_past_events_are_expired_once(session):
    planner, event, ticket_type = await _event_with_tickets(session)
    ticket = await buy_ticket(session, None, ticket_type.id, 2, "Ravi", "9876543210")

    before = await expire_past_events(session, now=EVENT_START)
    assert before == {"events": 0, "tickets": 0}

    after_end = EVENT_END + timedelta(days=1)
    result = await expire_past_events(session, now=after_end)
    assert result == {"events": 1, "tickets": 1}
    assert not (await reload(Event, event.id)).published
    assert not (await reload(Ticket, ticket.id)).is_valid

    assert await expire_past_events(session, now=after_end) == {"events": 0, "tickets": 0}

    with pytest.raises(ValidationError):
        await scan_ticket(session, planner, ticket.id)
    with pytest.raises(ValidationError):
        await buy_ticket(session, None, ticket_type.id, 1, "Asha", "9876500000")


async def test_ticket_type_updates_never_touch_sold(session):
    planner, _, ticket_type = await _event_with_tickets(session, quantity=10, price="100")
    await buy_ticket(session, None, ticket_type.id, 4, "Ravi", "9876543210")

    updated = await update_ticket_type(session, planner, ticket_type.id, title="Early bird", price="80", quantity=6)
    assert updated.title == "Early bird"
    assert updated.price == Decimal("80")
    assert updated.quantity == 6
    assert updated.sold == 4

    # down to exactly what is sold is fine, below it is not
    assert (await update_ticket_type(session, planner, ticket_type.id, quantity=4)).quantity == 4
    planner_id, ticket_type_id = planner.id, ticket_type.id
    with pytest.raises(Conflict):
        await update_ticket_type(session, planner, ticket_type_id, quantity=3)
    stored = await reload(TicketType, ticket_type_id)
    assert (stored.quantity, stored.sold) == (4, 4)

    planner = await reload(PlannerProfile, planner_id)
    with pytest.raises(ValidationError):
        await update_ticket_type(session, planner, ticket_type_id, price="-1")
    with pytest.raises(ValidationError):
        await update_ticket_type(session, planner, ticket_type_id, sales_start=EVENT_END, sales_end=EVENT_START)


async def test_only_the_owner_can_change_ticket_types(session):
    _, _, ticket_type = await _event_with_tickets(session)
    _, intruder = await make_planner(session, email="intruder@example.com")
    with pytest.raises(Forbidden):
        await update_ticket_type(session, intruder, ticket_type.id, quantity=100)
    with pytest.raises(Forbidden):
        await delete_ticket_type(session, intruder, ticket_type.id)
    with pytest.raises(NotFound):
        await update_ticket_type(session, intruder, 999, quantity=1)
    assert (await reload(TicketType, ticket_type.id)).quantity == 4


async def test_sold_ticket_types_cannot_be_deleted(session):
    planner, event, ticket_type = await _event_with_tickets(session)
    spare = await create_ticket_type(session, planner, event.id, "Spare", Decimal("10"), 5)
    await buy_ticket(session, None, ticket_type.id, 1, "Ravi", "9876543210")
    planner_id, ticket_type_id, spare_id = planner.id, ticket_type.id, spare.id

    with pytest.raises(Conflict):
        await delete_ticket_type(session, planner, ticket_type_id)
    assert (await reload(TicketType, ticket_type_id)).sold == 1

    planner = await reload(PlannerProfile, planner_id)
    await delete_ticket_type(session, planner, spare_id)
    assert await reload(TicketType, spare_id) is None
