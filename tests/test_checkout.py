import json
from urllib.parse import urlsplit

import httpx
import pytest

from socialpulse.api.deps import get_billing_service
from socialpulse.main import app
from socialpulse.services.billing import BillingService

URL = "/api/v1/checkout/create"
BODY = {"variantId": "123", "userId": "user-42", "email": "a+b@example.com"}


async def test_demo_checkout_url(client):
    response = await client.post(URL, json=BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["checkoutUrl"].startswith("https://socialpulse.lemonsqueezy.com/checkout/buy/123?")
    assert "checkout[custom][user_id]=user-42" in data["checkoutUrl"]
    assert "checkout[email]=a%2Bb%40example.com" in data["checkoutUrl"]
    assert data["orderId"].startswith("demo_")


async def test_demo_order_ids_are_unique(client):
    first = (await client.post(URL, json=BODY)).json()["orderId"]
    second = (await client.post(URL, json=BODY)).json()["orderId"]
    assert first != second


async def test_numeric_variant_id_is_accepted(client):
    response = await client.post(URL, json={**BODY, "variantId": 456})
    assert response.status_code == 200
    assert "/checkout/buy/456?" in response.json()["checkoutUrl"]


async def test_missing_fields_are_named(client):
    response = await client.post(URL, json={"variantId": "123"})
    assert response.status_code == 400
    assert response.json() == {"error": "Missing required fields: userId, email"}


async def test_invalid_email_is_rejected(client):
    response = await client.post(URL, json={**BODY, "email": "not-an-email"})
    assert response.status_code == 400
    assert "email" in response.json()["error"]


async def test_configured_checkout_calls_processor(client, processor):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"data": {"id": "chk_1", "attributes": {"url": "https://pay.example/chk_1"}}})

    processor(handler)
    response = await client.post(URL, json=BODY)

    assert response.status_code == 200
    assert response.json() == {"checkoutUrl": "https://pay.example/chk_1", "orderId": "chk_1"}

    [request] = seen
    assert request.method == "POST"
    assert urlsplit(str(request.url)).path == "/v1/checkouts"
    assert request.headers["Authorization"] == "Bearer ls_test_key"
    assert request.headers["Content-Type"] == "application/vnd.api+json"
    sent = json.loads(request.content)["data"]
    assert sent["attributes"]["checkout_data"]["custom"] == {"user_id": "user-42"}
    assert sent["attributes"]["checkout_data"]["email"] == "a+b@example.com"
    assert sent["relationships"]["variant"]["data"]["id"] == "123"
    assert sent["relationships"]["store"]["data"]["id"] == "9999"


async def test_store_id_alone_is_still_demo(client, make_settings):
    service = BillingService(make_settings(LEMONSQUEEZY_STORE_ID="9999"), httpx.AsyncClient())
    app.dependency_overrides[get_billing_service] = lambda: service

    response = await client.post(URL, json=BODY)

    assert response.json()["orderId"].startswith("demo_")
    await service.http.aclose()


async def test_upstream_rejection_is_a_generic_error(client, processor):
    processor(lambda request: httpx.Response(422, json={"errors": [{"detail": "secret upstream detail"}]}))

    response = await client.post(URL, json=BODY)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to create checkout"}
    assert "secret upstream detail" not in response.text


async def test_transport_failure_is_a_generic_error(client, processor):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    processor(handler)
    response = await client.post(URL, json=BODY)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to create checkout"}


async def test_unexpected_response_shape_is_a_generic_error(client, processor):
    processor(lambda request: httpx.Response(200, json={"data": {"id": "chk_1"}}))

    response = await client.post(URL, json=BODY)

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to create checkout"}
