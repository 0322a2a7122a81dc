"""
Agency Portal - Server Function Invoker
Calls the hosted email functions by name with a JSON body.

The functions themselves (templating, SMTP) live outside this service; a
call either returns the function's JSON response or raises
FunctionInvocationError.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)

KNOWN_FUNCTIONS = [
    "send-enforcement-notification",
    "send-known-to-ofsted-email",
    "send-dbs-request-email",
    "send-employee-email",
]


class FunctionInvocationError(RuntimeError):
    pass


class FunctionInvoker:
    def __init__(
        self,
        base_url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (config.FUNCTIONS_BASE_URL if base_url is None else base_url).rstrip("/")
        self.service_key = config.FUNCTIONS_SERVICE_KEY if service_key is None else service_key
        self.timeout_s = timeout_s or config.FUNCTIONS_TIMEOUT_S or 20.0
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.service_key:
            headers["Authorization"] = f"Bearer {self.service_key}"
        return headers

    def invoke(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if name not in KNOWN_FUNCTIONS:
            raise FunctionInvocationError(f"Unsupported function: {name}")
        if not self.base_url:
            raise FunctionInvocationError("FUNCTIONS_BASE_URL not configured")

        url = f"{self.base_url}/{name}"

        try:
            with httpx.Client(
                timeout=self.timeout_s, headers=self._headers(), transport=self.transport
            ) as client:
                resp = client.post(url, json=body)
        except httpx.HTTPError as exc:
            logger.error(f"Function {name} unreachable: {exc}")
            raise FunctionInvocationError(f"Function {name} unreachable: {exc}") from exc

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = None
            try:
                detail = resp.json()
            except ValueError:
                detail = resp.text
            if isinstance(detail, dict) and detail.get("error"):
                detail = detail["error"]
            raise FunctionInvocationError(f"Function {name} error {resp.status_code}: {detail}") from exc

        if not resp.content:
            return {}

        try:
            data = resp.json()
        except ValueError:
            return {"raw": resp.text}

        if isinstance(data, dict) and data.get("error"):
            raise FunctionInvocationError(f"Function {name} error: {data['error']}")

        return data
