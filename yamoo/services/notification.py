"""N8N notification webhooks (payment, cancel, plan change)."""

import logging

import httpx

from yamoo.config import ENABLE_N8N_NOTIFICATION_WEBHOOKS, N8N_WEBHOOK_URL

logger = logging.getLogger("yamoo")


def is_n8n_notification_enabled() -> bool:
    return ENABLE_N8N_NOTIFICATION_WEBHOOKS and bool(N8N_WEBHOOK_URL)


async def send_n8n_webhook(payload: dict) -> None:
    """Post a notification event. Delivery failures are logged, not raised."""
    if not ENABLE_N8N_NOTIFICATION_WEBHOOKS:
        logger.debug("N8N notification webhook disabled, skipping: %s", payload.get("event"))
        return
    if not N8N_WEBHOOK_URL:
        return

    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(N8N_WEBHOOK_URL, json=payload, timeout=10.0)
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("N8N webhook failed (event=%s): %s", payload.get("event"), exc)
