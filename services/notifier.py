"""Discord webhook notifications for new orders."""
import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from config import DISCORD_WEBHOOK_URL, NOTIFIER_TIMEOUT_SECONDS, NOTIFIER_USERNAME
from monitoring import notifier_duration_histogram, notifier_failures_counter
from schemas import OrderRecord

logger = logging.getLogger(__name__)

EMBED_COLOR = 0xC0392B
# Discord rejects embed field values longer than this
FIELD_LIMIT = 1024


def format_amount(value: float) -> str:
    if float(value).is_integer():
        return f"{value:,.0f}"
    return f"{value:,.2f}"


class OrderNotifier:
    """Best-effort, at-most-once delivery of order summaries to a Discord webhook."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        webhook_url: Optional[str] = DISCORD_WEBHOOK_URL,
        timeout: float = NOTIFIER_TIMEOUT_SECONDS,
        username: str = NOTIFIER_USERNAME
    ):
        """
        Initialize order notifier.

        Args:
            http_client: Async HTTP client
            webhook_url: Discord webhook URL; notifications are skipped when empty
            timeout: Upper bound in seconds for one delivery
            username: Display name of the webhook message
        """
        self.http_client = http_client
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.username = username

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def build_payload(self, order: OrderRecord) -> Dict[str, Any]:
        """Discord webhook body summarizing the order."""
        lines = [
            f"{item.quantity}x {item.name} @ {format_amount(item.price)} = {format_amount(item.subtotal)}"
            for item in order.items
        ]
        items_text = "\n".join(lines)
        if len(items_text) > FIELD_LIMIT:
            items_text = items_text[:FIELD_LIMIT - 3] + "..."

        fields = [
            {"name": "Customer", "value": order.customer_name, "inline": True},
            {"name": "Discord", "value": order.discord_id or "-", "inline": True},
            {"name": "Items", "value": items_text, "inline": False},
            {"name": "Total", "value": format_amount(order.total_price), "inline": True},
            {"name": "Status", "value": order.status, "inline": True},
        ]
        if order.additional_info:
            fields.append({"name": "Additional Info", "value": order.additional_info[:FIELD_LIMIT], "inline": False})

        return {
            "username": self.username,
            "embeds": [{
                "title": f"🛒 New Order #{order.id}",
                "color": EMBED_COLOR,
                "fields": fields,
                "timestamp": order.created_at.isoformat(),
            }]
        }

    async def _deliver(self, payload: Dict[str, Any]) -> httpx.Response:
        response = await self.http_client.post(self.webhook_url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response

    async def notify(self, order: OrderRecord) -> None:
        """
        Send the order summary. Never raises.

        Args:
            order: The persisted order
        """
        if not self.enabled:
            logger.debug("Discord webhook not configured, skipping notification", extra={
                "order_id": order.id
            })
            return

        start_time = time.time()
        status = "success"
        status_code = None
        try:
            payload = self.build_payload(order)
            response = await asyncio.wait_for(self._deliver(payload), timeout=self.timeout)
            status_code = response.status_code
            logger.info("Order notification sent", extra={
                "order_id": order.id,
                "status_code": status_code
            })
        except httpx.HTTPStatusError as e:
            status = "error"
            status_code = e.response.status_code
            notifier_failures_counter.add(1, {"reason": "http_status"})
            logger.warning("Discord webhook returned error status", extra={
                "order_id": order.id,
                "status_code": status_code
            })
        except asyncio.TimeoutError:
            status = "error"
            notifier_failures_counter.add(1, {"reason": "timeout"})
            logger.error("Order notification timed out", extra={
                "order_id": order.id,
                "timeout_seconds": self.timeout
            })
        except Exception as e:
            status = "error"
            notifier_failures_counter.add(1, {"reason": type(e).__name__})
            logger.error("Failed to send order notification", extra={
                "order_id": order.id,
                "error": str(e)
            })
        finally:
            notifier_duration_histogram.record(
                time.time() - start_time,
                {
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )
