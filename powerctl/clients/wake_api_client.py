# powerctl/clients/wake_api_client.py
from typing import Any, Dict, Optional

import httpx

SECRET_HEADER = "X-Wake-Secret"


class WakeApiClient:
    """Drives a remote `powerctl serve` endpoint instead of sending packets locally."""

    def __init__(self, base_url: str, secret: Optional[str] = None, timeout: float = 300, transport=None):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.timeout = timeout
        self.transport = transport

    def _headers(self):
        h = {"Content-Type": "application/json"}
        if self.secret:
            h[SECRET_HEADER] = self.secret
        return h

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            r = client.request(method, f"{self.base_url}{path}", params=params, headers=self._headers())
        if r.status_code >= 400:
            try:
                detail = r.json().get("detail")
            except ValueError:
                detail = r.text
            return {"ok": False, "status_code": r.status_code, "error": detail}
        return r.json()

    def wake(self, hostname: str, verify: bool = False) -> Dict[str, Any]:
        return self._request("POST", f"/wake/{hostname}", params={"verify": str(verify).lower()})

    def wake_all(self, verify: bool = False) -> Dict[str, Any]:
        return self._request("POST", "/wake/all", params={"verify": str(verify).lower()})

    def status(self) -> Dict[str, Any]:
        return self._request("GET", "/status")

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")
