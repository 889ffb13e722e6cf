import hashlib
import hmac
import json

import pytest
from sqlalchemy import select

from socialpulse.api.deps import get_webhook_handler
from socialpulse.main import app
from socialpulse.models import Profile, Subscription, WebhookEvent
from socialpulse.services.lemonsqueezy_webhook import LemonSqueezyWebhookHandler
from socialpulse.utils.database import AsyncSessionLocal
from socialpulse.utils.exceptions import SignatureError

SECRET = "whsec_test"
STARTER_VARIANT = "111"
PRO_VARIANT = "222"
URL = "/api/v1/webhooks/payments"


def sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def make_event(name, data_id="sub_1", *, event_id=None, user_id=None, **attributes):
    meta = {"event_name": name}
    if event_id:
        meta["event_id"] = event_id
    if user_id:
        meta["custom_data"] = {"user_id": user_id}
    return {"meta": meta, "data": {"id": data_id, "type": "subscriptions", "attributes": attributes}}


def subscription_event(name, user_id, data_id="sub_1", *, event_id=None, variant=STARTER_VARIANT, status="active", **extra):
    attributes = {
        "status": status,
        "variant_id": variant,
        "created_at": "2026-03-10T08:30:00.000000Z",
        "renews_at": "2026-04-10T08:30:00.000000Z",
        "cancelled": False,
    }
    attributes.update(extra)
    return make_event(name, data_id, event_id=event_id, user_id=user_id, **attributes)


async def load_subscription(user_id):
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Subscription).where(Subscription.user_id == user_id))
        return result.scalar_one_or_none()


async def load_profile(user_id):
    async with AsyncSessionLocal() as session:
        return await session.get(Profile, user_id)


async def load_events():
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(WebhookEvent).order_by(WebhookEvent.id))
        return list(result.scalars().all())


@pytest.fixture
def use_handler(client, make_settings):
    def _use(**env):
        env.setdefault("LEMONSQUEEZY_STARTER_VARIANT_ID", STARTER_VARIANT)
        env.setdefault("LEMONSQUEEZY_PRO_VARIANT_ID", PRO_VARIANT)
        handler = LemonSqueezyWebhookHandler(make_settings(**env))
        app.dependency_overrides[get_webhook_handler] = lambda: handler
        return handler
    return _use


@pytest.fixture
def deliver(client):
    async def _deliver(payload, secret=SECRET, signature=None):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        headers = {"Content-Type": "application/json"}
        if signature is not None:
            headers["X-Signature"] = signature
        elif secret:
            headers["X-Signature"] = sign(body, secret)
        return await client.post(URL, content=body, headers=headers)
    return _deliver


async def test_bad_signature_is_rejected_without_side_effects(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("u1")

    response = await deliver(subscription_event("subscription_created", "u1"), signature="deadbeef")

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}
    assert await load_events() == []
    assert await load_subscription("u1") is None


async def test_missing_signature_is_rejected(use_handler, deliver):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    response = await deliver(make_event("order_created", "ord_1"), secret=None)
    assert response.status_code == 401


async def test_signature_from_another_secret_is_rejected(use_handler, deliver):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    response = await deliver(make_event("order_created", "ord_1"), secret="someone-else")
    assert response.status_code == 401


async def test_unsigned_delivery_accepted_when_no_secret_configured(use_handler, deliver, add_profile):
    use_handler()
    await add_profile("u1")

    response = await deliver(subscription_event("subscription_created", "u1"), secret=None)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert (await load_subscription("u1")).plan_id == "starter"


async def test_subscription_created_then_cancelled(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("u1")

    response = await deliver(subscription_event("subscription_created", "u1", event_id="evt_1"))
    assert response.status_code == 200

    subscription = await load_subscription("u1")
    assert subscription.external_id == "sub_1"
    assert subscription.plan_id == "starter"
    assert subscription.status == "active"
    assert subscription.cancel_at_period_end is False
    assert subscription.current_period_end.replace(tzinfo=None).isoformat() == "2026-04-10T08:30:00"
    assert subscription.current_period_start.replace(tzinfo=None).isoformat() == "2026-03-10T08:30:00"

    profile = await load_profile("u1")
    assert (profile.subscription_tier, profile.subscription_status) == ("starter", "active")

    response = await deliver(make_event("subscription_cancelled", "sub_1", event_id="evt_2"))
    assert response.status_code == 200

    subscription = await load_subscription("u1")
    assert subscription.status == "canceled"
    assert subscription.cancel_at_period_end is True
    # access continues until the period ends
    assert subscription.plan_id == "starter"
    assert (await load_profile("u1")).subscription_status == "canceled"

    events = await load_events()
    assert [(e.event_id, e.processed) for e in events] == [("evt_1", True), ("evt_2", True)]
    assert all(e.processed_at is not None for e in events)


async def test_subscription_updated_changes_plan_and_flags(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("u1")
    await deliver(subscription_event("subscription_created", "u1", event_id="evt_1"))

    await deliver(subscription_event(
        "subscription_updated", "u1", event_id="evt_2", variant=PRO_VARIANT, status="on_trial", cancelled=True,
    ))

    subscription = await load_subscription("u1")
    assert subscription.plan_id == "pro"
    assert subscription.status == "on_trial"
    assert subscription.cancel_at_period_end is True

    async with AsyncSessionLocal() as session:
        rows = (await session.execute(select(Subscription))).scalars().all()
    assert len(rows) == 1

    profile = await load_profile("u1")
    assert (profile.subscription_tier, profile.subscription_status) == ("pro", "on_trial")


async def test_unknown_variant_maps_to_free(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("u1")
    await deliver(subscription_event("subscription_created", "u1", variant="999"))
    assert (await load_subscription("u1")).plan_id == "free"


async def test_period_start_requires_renews_at(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("u1")
    await deliver(subscription_event("subscription_created", "u1", renews_at=None))

    subscription = await load_subscription("u1")
    assert subscription.current_period_start is None
    assert subscription.current_period_end is None


async def test_missing_user_id_is_acknowledged_without_mutation(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("u1")

    response = await deliver(subscription_event("subscription_created", None, event_id="evt_1"))

    assert response.status_code == 200
    async with AsyncSessionLocal() as session:
        assert (await session.execute(select(Subscription))).scalars().all() == []
    assert (await load_profile("u1")).subscription_tier == "free"
    assert (await load_events())[0].processed is True


async def test_cancellation_only_touches_matching_subscription(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("alice")
    await add_profile("bob")
    await deliver(subscription_event("subscription_created", "alice", "sub_a", event_id="evt_a"))
    await deliver(subscription_event("subscription_created", "bob", "sub_b", event_id="evt_b", variant=PRO_VARIANT))

    await deliver(make_event("subscription_cancelled", "sub_a", event_id="evt_c"))

    assert (await load_subscription("alice")).status == "canceled"
    bob = await load_subscription("bob")
    assert (bob.status, bob.cancel_at_period_end, bob.plan_id) == ("active", False, "pro")


async def test_subscription_update_only_touches_its_own_user(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("alice")
    await add_profile("bob")

    response = await deliver(subscription_event("subscription_updated", "alice", "sub_a", event_id="evt_a"))

    assert response.status_code == 200
    assert (await load_subscription("alice")).external_id == "sub_a"
    assert await load_subscription("bob") is None
    bob = await load_profile("bob")
    assert (bob.subscription_tier, bob.subscription_status) == ("free", None)
    async with AsyncSessionLocal() as session:
        assert len((await session.execute(select(Subscription))).scalars().all()) == 1


async def test_event_row_is_unprocessed_until_handler_returns(use_handler, deliver):
    handler = use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    seen = []

    async def record_state(db, body, now):
        result = await db.execute(select(WebhookEvent.processed).where(WebhookEvent.event_id == "evt_1"))
        seen.append(result.scalar_one())

    handler.handlers["order_created"] = record_state

    response = await deliver(make_event("order_created", "ord_1", event_id="evt_1"))

    assert response.status_code == 200
    assert seen == [False]
    [row] = await load_events()
    assert row.processed is True
    assert row.processed_at is not None


async def test_subscription_without_status_is_kept_unprocessed(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("u1")

    response = await deliver(subscription_event("subscription_created", "u1", event_id="evt_1", status=None))

    assert response.status_code == 200
    [row] = await load_events()
    assert row.processed is False
    assert "attributes.status" in row.error
    assert await load_subscription("u1") is None
    assert (await load_profile("u1")).subscription_tier == "free"


async def test_payment_failed_marks_past_due(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("u1")
    await deliver(subscription_event("subscription_created", "u1", event_id="evt_1"))

    response = await deliver(make_event("subscription_payment_failed", "sub_1", event_id="evt_2"))

    assert response.status_code == 200
    assert (await load_subscription("u1")).status == "past_due"
    assert (await load_profile("u1")).subscription_status == "past_due"


@pytest.mark.parametrize("name", ["subscription_payment_success", "order_created", "license_key_created"])
async def test_log_only_and_unknown_events_are_recorded(use_handler, deliver, name):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)

    response = await deliver(make_event(name, "obj_1", event_id="evt_1"))

    assert response.status_code == 200
    events = await load_events()
    assert [(e.event_type, e.resource_id, e.processed) for e in events] == [(name, "obj_1", True)]


async def test_event_key_falls_back_to_body_hash(use_handler, deliver):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    body = json.dumps(make_event("order_created", "ord_1")).encode()

    await deliver(body)

    assert (await load_events())[0].event_id == hashlib.sha256(body).hexdigest()


async def test_redelivered_processed_event_is_not_dispatched_again(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    await add_profile("u1")
    created = subscription_event("subscription_created", "u1", event_id="evt_1")
    await deliver(created)
    await deliver(make_event("subscription_cancelled", "sub_1", event_id="evt_2"))

    response = await deliver(created)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert (await load_subscription("u1")).status == "canceled"
    assert len(await load_events()) == 2


@pytest.mark.parametrize(
    "body",
    [
        b"{not json",
        b"[1, 2, 3]",
        json.dumps({"meta": {}, "data": {"id": "x"}}).encode(),
        json.dumps({"meta": {"event_name": "order_created"}, "data": {}}).encode(),
    ],
)
async def test_malformed_payload_is_a_processing_failure(use_handler, deliver, body):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)

    response = await deliver(body)

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}
    assert await load_events() == []


async def test_handler_failure_is_acknowledged_and_kept_unprocessed(use_handler, deliver, add_profile):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET)
    event = subscription_event("subscription_created", "late-user", event_id="evt_1")

    # no profile yet, so the handler fails
    response = await deliver(event)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    [row] = await load_events()
    assert row.processed is False
    assert "late-user" in row.error
    assert await load_subscription("late-user") is None

    # a redelivery after the profile exists is dispatched again
    await add_profile("late-user")
    response = await deliver(event)

    assert response.status_code == 200
    [row] = await load_events()
    assert row.processed is True
    assert row.error is None
    assert (await load_subscription("late-user")).plan_id == "starter"


async def test_retry_policy_reports_failure(use_handler, deliver):
    use_handler(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET, WEBHOOK_FAILURE_POLICY="retry")

    response = await deliver(subscription_event("subscription_created", "late-user", event_id="evt_1"))

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}
    [row] = await load_events()
    assert row.processed is False
    assert row.error


def test_signature_covers_exact_raw_body(make_settings):
    handler = LemonSqueezyWebhookHandler(make_settings(LEMONSQUEEZY_WEBHOOK_SECRET=SECRET))
    body = b'{"meta": {}}'
    handler.verify_signature(body, sign(body))
    with pytest.raises(SignatureError):
        handler.verify_signature(body + b" ", sign(body))
