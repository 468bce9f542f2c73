import logging
from typing import Optional

import requests

log = logging.getLogger(__name__)

DISCORD_LIMIT = 2000  # Discord message hard limit (approx)

def _truncate_for_discord(text: str, limit: int = DISCORD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    # Keep a small suffix to show truncation
    return text[: limit - 20] + "\n… (truncated)"

def _webhook_from_variable() -> str:
    from airflow.models import Variable
    return Variable.get("DISCORD_WEBHOOK", default_var="")

def send_discord_alert(message: str, username: Optional[str] = "Replication Alert",
                       avatar_url: Optional[str] = None, webhook_url: Optional[str] = None) -> bool:
    """
    Post a message to a Discord webhook. Without an explicit webhook_url the
    Airflow Variable 'DISCORD_WEBHOOK' is used.
    Returns True when Discord accepted the message (200 with '?wait=true', otherwise 204).
    """
    if webhook_url is None:
        webhook_url = _webhook_from_variable()
    if not webhook_url:
        log.warning("No Discord webhook URL configured (Variable 'DISCORD_WEBHOOK'), skipping alert.")
        return False

    payload = {
        "content": _truncate_for_discord(message),
        "username": username,
    }
    if avatar_url:
        payload["avatar_url"] = avatar_url

    try:
        response = requests.post(webhook_url, json=payload, timeout=10)
    except requests.RequestException as e:
        log.exception("Exception while sending Discord alert: %s", e)
        return False

    if response.status_code in (200, 204):
        log.info("Discord alert sent successfully (status %s).", response.status_code)
        return True

    log.error("Failed to send Discord alert: status=%s body=%s", response.status_code, response.text)
    return False
