from __future__ import annotations
from threading import RLock
from typing import Iterable, List, Optional
import logging, os, requests

from uam.metrics import notifications_failed_total

logger = logging.getLogger(__name__)

NOTIFY_FROM = os.getenv("NOTIFY_FROM", "UAM Notification <no-reply@localhost>")
NOTIFY_TIMEOUT_SEC = float(os.getenv("NOTIFY_TIMEOUT_SEC", "10"))

# Relay URL seeded from NOTIFY_WEBHOOK_URL; admins can repoint it at runtime.
# None means "not overridden", "" means "explicitly disabled".
_relay_lock = RLock()
_relay_override: Optional[str] = None

def set_notify_webhook(url: Optional[str]) -> None:
    global _relay_override
    with _relay_lock:
        _relay_override = None if url is None else url.strip()

def get_notify_webhook() -> str:
    with _relay_lock:
        if _relay_override is not None:
            return _relay_override
    return os.getenv("NOTIFY_WEBHOOK_URL", "").strip()

def _recipients(to: Iterable[str | None]) -> List[str]:
    seen: List[str] = []
    for addr in to:
        addr = (addr or "").strip()
        if addr and addr.lower() not in (s.lower() for s in seen):
            seen.append(addr)
    return seen

def send_email(to: Iterable[str | None], subject: str, html: str) -> bool:
    """
    POST a templated email to the mail relay; never crash the caller.
    Resolves the relay URL dynamically each call. Returns True when the relay
    accepted the message.
    """
    recipients = _recipients(to)
    if not recipients:
        logger.info("no recipients for %r; skipping send", subject)
        return False
    url = get_notify_webhook()
    if not url:
        logger.info("notify webhook not set; skipping send of %r to %s", subject, recipients)
        return False
    payload = {"from": NOTIFY_FROM, "to": recipients, "subject": subject, "html": html}
    try:
        r = requests.post(url, json=payload, timeout=NOTIFY_TIMEOUT_SEC)
    except requests.RequestException as e:
        notifications_failed_total.inc()
        logger.warning("notify send error for %r: %s", subject, e)
        return False
    if r.status_code >= 300:
        notifications_failed_total.inc()
        logger.warning("notify relay refused %r: status=%s body=%s", subject, r.status_code, r.text[:300])
        return False
    logger.info("notification %r sent to %s", subject, recipients)
    return True
