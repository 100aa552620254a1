# =============================================================================
# justice_bus/offline/http_client.py
# HTTP client used for direct submissions and queue replay
# =============================================================================

from __future__ import annotations
from typing import Any, Dict, Optional

import requests

from justice_bus.errors import ReplayFailure
from justice_bus.logging import get_logger

logger = get_logger(__name__)


class ApiClient:
    """
    Thin JSON client over a requests.Session.

    Any 2xx response is success; everything else, transport errors included,
    raises ReplayFailure.

    Usage:
        client = ApiClient("https://justicebus.example.org")
        client.post_json("/api/forms", {"name": "Test"})
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if headers:
            self.session.headers.update(headers)

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def send(
        self,
        path: str,
        method: str = "POST",
        payload: Any = None,
        raise_for_status: bool = True,
    ) -> requests.Response:
        """
        Make an HTTP request with a JSON body.

        Args:
            path: Endpoint path (joined to base_url) or absolute URL
            method: HTTP method
            payload: JSON body (omitted when None)
            raise_for_status: Whether a non-2xx reply raises ReplayFailure

        Returns:
            Response object
        """
        method = method.upper()
        try:
            response = self.session.request(
                method=method,
                url=self.url_for(path),
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ReplayFailure(
                f"Request failed for {method} {path}: {e}",
                api_path=path,
                method=method,
            ) from e

        if raise_for_status and not 200 <= response.status_code < 300:
            raise ReplayFailure(
                f"{method} {path} returned HTTP {response.status_code}",
                api_path=path,
                method=method,
                status_code=response.status_code,
            )
        return response

    def post_json(self, path: str, payload: Any, raise_for_status: bool = True) -> Any:
        """POST a JSON body and return the decoded reply (None when empty)."""
        return _decode(self.send(path, "POST", payload, raise_for_status=raise_for_status))

    def get_json(self, path: str) -> Any:
        return _decode(self.send(path, "GET"))


def _decode(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        logger.debug(f"Non-JSON reply from {response.url}")
        return None
