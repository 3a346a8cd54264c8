# powerctl/clients/notifier.py
import logging
from datetime import datetime, timezone
from typing import Optional

from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

log = logging.getLogger("powerctl.clients.notifier")


class WebhookNotifier:
    """
    Best-effort JSON webhook. `send` never raises; it returns False when the
    notification could not be delivered.
    """

    def __init__(self, url: Optional[str], enabled: bool = True, timeout: float = 10, session: Optional[Session] = None):
        self.url = url
        self.enabled = enabled and bool(url)
        self.timeout = timeout
        self.session = session or self._make_session()

    def _make_session(self) -> Session:
        s = Session()
        s.headers.update({"Content-Type": "application/json"})
        retries = Retry(total=2, backoff_factor=0.5, status_forcelist=(502, 503, 504))
        s.mount("http://", HTTPAdapter(max_retries=retries))
        s.mount("https://", HTTPAdapter(max_retries=retries))
        return s

    def send(self, event: str, node: str, text: Optional[str] = None) -> bool:
        if text:
            log.info("Notification: %s", text)
        if not self.enabled:
            return True
        payload = {
            "event": event,
            "node": node,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if text:
            payload["text"] = text
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            return True
        except Exception as e:
            log.warning("Failed to send %s notification: %s", event, e)
            return False
