"""Run completion notifications."""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol

import requests

from directory.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


class Notifier(Protocol):
    def notify(
        self,
        run_id: str,
        trigger: str,
        found: int,
        new: int,
        updated: int,
        duration_ms: int,
        success: bool,
        errors: List[str],
    ) -> None:
        ...


class WebhookNotifier:
    """POST a JSON summary of each finished run to `NOTIFY_WEBHOOK_URL`."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None) -> None:
        self.settings = settings or get_settings()
        self.session = session or requests.Session()

    def notify(
        self,
        run_id: str,
        trigger: str,
        found: int,
        new: int,
        updated: int,
        duration_ms: int,
        success: bool,
        errors: List[str],
    ) -> None:
        url = self.settings.notify_webhook_url
        if not url:
            logger.warning("NOTIFY_WEBHOOK_URL missing; skipping notification for %s", run_id)
            return

        payload = {
            "run_id": run_id,
            "trigger": trigger,
            "status": "completed" if success else "failed",
            "found": found,
            "new": new,
            "updated": updated,
            "duration_ms": duration_ms,
            "success": success,
            "errors": errors[:20],
        }
        response = self.session.post(
            url,
            json=payload,
            timeout=REQUEST_TIMEOUT,
            headers={"User-Agent": self.settings.user_agent},
        )
        response.raise_for_status()
        logger.info("Sent run notification for %s (status=%s)", run_id, response.status_code)


def dispatch_notification(notifier: Optional[Notifier], **summary) -> bool:
    """Deliver a notification; failures are logged and never raised."""
    if notifier is None:
        return False
    try:
        notifier.notify(**summary)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to send notification for %s: %s", summary.get("run_id"), exc)
        return False
    return True
