"""Tests for the Discord order notifier."""
import asyncio
import json
import logging
from datetime import datetime, timezone

import httpx
import pytest

from schemas import LineItem, OrderRecord
from services.notifier import OrderNotifier, format_amount

from conftest import WEBHOOK_URL


@pytest.fixture
def order() -> OrderRecord:
    now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
    return OrderRecord(
        id="42",
        customer_name="Budi",
        discord_id="budi#1234",
        additional_info="Antar ke Vinewood",
        items=[
            LineItem(product_id="7", name="AK-47", category="senjata", price=15000, quantity=2),
            LineItem(name="Ammo 7.62", price=12.5, quantity=4),
        ],
        total_price=30050,
        created_at=now,
        updated_at=now,
    )


class TestFormatAmount:

    @pytest.mark.parametrize("value,expected", [
        (15000, "15,000"),
        (15000.0, "15,000"),
        (12.5, "12.50"),
        (0, "0"),
        (1234567.891, "1,234,567.89"),
    ])
    def test_format(self, value, expected):
        assert format_amount(value) == expected


class TestBuildPayload:

    def test_embed_summarizes_order(self, notifier, order):
        payload = notifier.build_payload(order)

        embed = payload["embeds"][0]
        assert payload["username"] == notifier.username
        assert embed["title"] == "🛒 New Order #42"
        assert embed["timestamp"] == "2026-10-17T12:00:00+00:00"
        fields = {field["name"]: field["value"] for field in embed["fields"]}
        assert fields == {
            "Customer": "Budi",
            "Discord": "budi#1234",
            "Items": "2x AK-47 @ 15,000 = 30,000\n4x Ammo 7.62 @ 12.50 = 50",
            "Total": "30,050",
            "Status": "pending",
            "Additional Info": "Antar ke Vinewood",
        }

    def test_optional_fields(self, notifier, order):
        order = order.model_copy(update={"discord_id": "", "additional_info": ""})

        fields = {field["name"]: field["value"] for field in notifier.build_payload(order)["embeds"][0]["fields"]}

        assert fields["Discord"] == "-"
        assert "Additional Info" not in fields

    def test_long_item_list_is_truncated(self, notifier, order):
        items = [LineItem(name=f"Item {n}", price=1, quantity=1) for n in range(200)]
        order = order.model_copy(update={"items": items})

        fields = {field["name"]: field["value"] for field in notifier.build_payload(order)["embeds"][0]["fields"]}

        assert len(fields["Items"]) == 1024
        assert fields["Items"].endswith("...")


class TestNotify:

    def test_posts_to_webhook(self, notifier, webhook, order):
        asyncio.run(notifier.notify(order))

        assert len(webhook.requests) == 1
        request = webhook.requests[0]
        assert str(request.url) == WEBHOOK_URL
        assert json.loads(request.content)["embeds"][0]["title"] == "🛒 New Order #42"

    def test_disabled_without_webhook_url(self, webhook, order):
        client = httpx.AsyncClient(transport=httpx.MockTransport(webhook))
        notifier = OrderNotifier(client, webhook_url="")

        asyncio.run(notifier.notify(order))

        assert not notifier.enabled
        assert webhook.requests == []

    def test_transport_error_is_logged_not_raised(self, notifier, webhook, order, caplog):
        webhook.error = httpx.ConnectError("connection refused")

        with caplog.at_level(logging.ERROR, logger="services.notifier"):
            asyncio.run(notifier.notify(order))

        assert "Failed to send order notification" in caplog.text

    def test_error_status_is_logged_not_raised(self, notifier, webhook, order, caplog):
        webhook.status_code = 429

        with caplog.at_level(logging.WARNING, logger="services.notifier"):
            asyncio.run(notifier.notify(order))

        assert "Discord webhook returned error status" in caplog.text

    def test_slow_webhook_is_abandoned(self, order, caplog):
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(slow))
        notifier = OrderNotifier(client, webhook_url=WEBHOOK_URL, timeout=0.05)

        with caplog.at_level(logging.ERROR, logger="services.notifier"):
            asyncio.run(notifier.notify(order))

        assert "Order notification timed out" in caplog.text
