"""
Notification Service — Emit billing events to a downstream webhook.

Used for user notifications and the audit trail. Delivery is best-effort:
failures are logged and never raised, reconciliation correctness does not
depend on it.
"""

import logging
from typing import Any

import httpx

from config import settings

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(
        self,
        webhook_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFY_WEBHOOK_URL
        self.timeout = timeout
        self.transport = transport

    async def emit(self, event_type: str, payload: dict[str, Any]) -> bool:
        """POST {"type": ..., "data": ...} to the webhook. Returns delivery success."""
        if not self.webhook_url:
            logger.debug("No notification webhook configured, dropping %s", event_type)
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(
                    self.webhook_url,
                    json={"type": event_type, "data": payload},
                )
                if resp.status_code >= 400:
                    logger.warning("Notification %s rejected: HTTP %s", event_type, resp.status_code)
                    return False
                return True
        except httpx.HTTPError as e:
            logger.warning("Notification %s failed: %s", event_type, e)
            return False


async def notify_subscription_credited(notifier: Notifier | None, result) -> None:
    if notifier is None:
        return
    await notifier.emit("subscription.credited", {
        "user_id": result.user_id,
        "tier": int(result.tier),
        "expires_at": result.expires_at.isoformat(),
        "months_added": result.months_added,
        "gateway": result.gateway.value,
        "transaction_ref": result.transaction_ref,
    })


async def notify_manual_payment_rejected(notifier: Notifier | None, submission) -> None:
    if notifier is None:
        return
    await notifier.emit("manual_payment.rejected", {
        "submission_id": submission.id,
        "user_id": submission.user_id,
        "business_id": submission.business_id,
        "admin_notes": submission.admin_notes,
    })
