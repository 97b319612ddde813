"""
Base HTTP adapter for the backend APIs.

Every call returns a plain dict shaped like {"ok": bool, "status": int,
...json body}. Network failures and unparsable bodies are folded into that
shape (status 0 and an "error" string) so callers never need a try block.
"""

import logging
import re
from typing import Any, Dict, Optional

import requests

from config import api_config

logger = logging.getLogger(__name__)

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


class ApiAdapter:
    """
    JSON-over-HTTP helpers bound to one base URL.

    Attributes:
        base_url: Prefix for relative paths (trailing slashes stripped)
        timeout: Per-request timeout in seconds
        session: requests.Session shared by all calls
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        self.base_url = (base_url if base_url is not None else api_config.base_url).rstrip("/")
        self.timeout = timeout or api_config.timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def url_for(self, path: str) -> str:
        """Full URLs pass through untouched; anything else is joined to the base."""
        path = str(path or "")
        if _ABSOLUTE_URL.match(path):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return self.base_url + path

    @staticmethod
    def _parse(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"data": body}

    def request_json(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Perform a request and fold the outcome into a result dict.

        Args:
            method: HTTP verb
            path: Relative path or absolute URL
            **kwargs: Passed to requests.Session.request

        Returns:
            {"ok", "status", **body}; never raises
        """
        url = self.url_for(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{method} {url} failed: {e}")
            return {"ok": False, "status": 0, "error": str(e)}

        result = {"ok": response.ok, "status": response.status_code}
        result.update(self._parse(response))
        # Body keys must not mask the transport outcome
        result["ok"] = response.ok and result.get("ok", True) is not False
        result["status"] = response.status_code
        return result

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request_json("GET", path, params=params)

    def post_json(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request_json("POST", path, json=body or {})

    def put_json(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request_json("PUT", path, json=body or {})

    def delete(self, path: str) -> Dict[str, Any]:
        return self.request_json("DELETE", path)
