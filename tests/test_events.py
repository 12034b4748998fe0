"""
Transactional outbox and webhook dispatcher.
"""
import asyncio
import json

import httpx
import pytest

from app.core.errors import InsufficientStockError
from app.events import bus
from app.events.dispatcher import _pattern_matches, dispatch_batch
from app.events.outbox import OutboxEvent
from app.events.subscriptions import EventSubscription
from services.mes import service as production
from services.mrp import bom as boms


@pytest.mark.parametrize(
    "pattern,topic,expected",
    [
        ("production.order.completed", "production.order.completed", True),
        ("production.", "production.order.created", True),
        ("production.*", "production.order.created", True),
        ("production.*", "productionx.order", False),
        ("inventory.", "production.order.created", False),
        ("", "production.order.created", False),
    ],
)
def test_pattern_matches(pattern, topic, expected):
    assert _pattern_matches(pattern, topic) is expected


def test_publish_joins_caller_transaction(db):
    bus.publish(db, "test.topic", {"n": 1})
    db.rollback()
    assert db.query(OutboxEvent).count() == 0


def test_rejected_completion_publishes_nothing(db, make_product, schedule):
    a = make_product("Widget A", "manufactured")
    x = make_product("Component X", "component", 1)
    boms.create_bom(db, a.id, [(x.id, 2)])
    order = production.create_order(db, product_id=a.id, quantity=1, **schedule)
    before = db.query(OutboxEvent).count()

    with pytest.raises(InsufficientStockError):
        production.complete_order(db, order.id)

    assert db.query(OutboxEvent).count() == before


def _subscribe(db, pattern, url="http://hooks.test/inbox"):
    sub = EventSubscription(name="test", topic_pattern=pattern, target_url=url, headers={"X-Token": "t"}, is_active=True)
    db.add(sub)
    db.commit()
    return sub


def _run(session_factory, handler):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await dispatch_batch(client, session_factory)
    return asyncio.run(go())


def test_dispatch_delivers_matching_events(db, session_factory):
    _subscribe(db, "production.")
    bus.publish(db, "production.order.completed", {"order_id": "o-1"}, correlation_id="corr-1")
    bus.publish(db, "inventory.stock.adjusted", {"product_id": "p-1"})
    db.commit()
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.headers.get("X-Token"), request.headers.get("X-Correlation-Id"), json.loads(request.content)))
        return httpx.Response(200)

    assert _run(session_factory, handler) == 2

    [(token, corr, body)] = seen
    assert (token, corr) == ("t", "corr-1")
    assert body["topic"] == "production.order.completed"
    assert body["payload"] == {"order_id": "o-1"}
    db.expire_all()
    assert db.query(OutboxEvent).filter(OutboxEvent.delivered == False).count() == 0  # noqa: E712


def test_failed_delivery_is_retried_later(db, session_factory):
    sub = _subscribe(db, "production.*")
    evt = bus.publish(db, "production.order.created", {"order_id": "o-2"})
    db.commit()

    assert _run(session_factory, lambda request: httpx.Response(503, text="busy")) == 1

    db.expire_all()
    evt = db.get(OutboxEvent, evt.id)
    assert evt.delivered is False
    assert evt.attempt_count == 1
    assert "503" in evt.last_error
    assert db.get(EventSubscription, sub.id).failure_count == 1

    # Backed off: not due yet, so the next batch is empty
    assert _run(session_factory, lambda request: httpx.Response(200)) == 0


def test_event_without_subscribers_is_marked_delivered(db, session_factory):
    bus.publish(db, "sales.invoice.created", {})
    db.commit()
    assert _run(session_factory, lambda request: httpx.Response(500)) == 1
    db.expire_all()
    assert db.query(OutboxEvent).one().delivered is True


def test_admin_subscription_endpoints(client):
    created = client.post(
        "/admin/events/subscriptions",
        json={"name": "erp", "topic_pattern": "production.", "target_url": "http://hooks.test/erp"},
    )
    assert created.status_code == 201
    sub_id = created.json()["id"]

    toggled = client.post(f"/admin/events/subscriptions/{sub_id}/toggle").json()
    assert toggled["is_active"] is False
    [listed] = client.get("/admin/events/subscriptions").json()
    assert listed["is_active"] is False

    published = client.post("/admin/events/publish", json={"topic": "production.test", "payload": {"a": 1}}).json()
    outbox = client.get("/admin/events/outbox", params={"topic": "production.test"}).json()
    assert [e["id"] for e in outbox] == [published["event_id"]]

    assert client.delete(f"/admin/events/subscriptions/{sub_id}").json()["deleted"] is True
    assert client.get("/admin/events/subscriptions").json() == []
