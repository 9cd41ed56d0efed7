"""HTTP transport and JSON envelope codec for the Sharpspring REST API."""
from __future__ import annotations

import html
import json
import logging
import uuid
from typing import Any, Dict, Mapping, Optional, Tuple

import requests

from .exceptions import ProtocolFormatError, TransportError
from .rate_limit import RateLimiter

LOGGER = logging.getLogger(__name__)

SHARPSPRING_BASE_URL = "https://api.sharpspring.com/pubapi/v1"

_DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": "sharpspring-sync",
}
_DISALLOWED_HEADERS = {"content-length", "transfer-encoding"}


def sanitize_value(value: Any) -> Any:
    """Undo the HTML entity encoding Sharpspring applies to string values.

    Values come back HTML encoded, sometimes twice for ``<``; decoding an
    already clean string leaves it unchanged.
    """

    if not isinstance(value, str):
        return value
    return html.unescape(value).replace("&lt;", "<")


def sanitize_tree(node: Any) -> Any:
    """Apply :func:`sanitize_value` to every string leaf of a decoded response."""

    if isinstance(node, dict):
        return {key: sanitize_tree(value) for key, value in node.items()}
    if isinstance(node, list):
        return [sanitize_tree(value) for value in node]
    return sanitize_value(node)


def encode_request(method: str, params: Mapping[str, Any], request_id: str) -> bytes:
    return json.dumps({"method": method, "params": dict(params), "id": request_id}).encode("utf-8")


def decode_response(body: Any, request_id: Optional[str] = None) -> Dict[str, Any]:
    """Decode a response body into a sanitized envelope.

    ``body`` may be bytes, text, or an already decoded mapping. If
    ``request_id`` is given, the envelope must echo it back.
    """

    if isinstance(body, Mapping):
        response = dict(body)
    else:
        if isinstance(body, bytes):
            try:
                body = body.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ProtocolFormatError(f"Response is not valid UTF-8.\nValue: {body!r}", 3) from exc
        try:
            response = json.loads(body)
        except (TypeError, ValueError) as exc:
            raise ProtocolFormatError(f"Response holds invalid JSON.\nValue: {body!r}", 3) from exc
        if not isinstance(response, dict):
            raise ProtocolFormatError(f"Response holds invalid JSON (or null).\nValue: {body!r}", 3)

    response = sanitize_tree(response)
    if request_id is not None:
        if response.get("id") is None:
            raise ProtocolFormatError(
                f"Sharpspring REST API systemic error: no id found in JSON response.\nResponse: {json.dumps(response)}",
                1,
            )
        if str(response["id"]) != str(request_id):
            raise ProtocolFormatError(
                "Sharpspring REST API systemic error: unexpected id value found in JSON response.\n"
                f"Request ID: {request_id}\nResponse: {json.dumps(response)}",
                2,
            )
    return response


def _validate_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    seen = set(_DISALLOWED_HEADERS)
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name in seen:
            raise ValueError(f"Duplicate or disallowed HTTP header name '{name}'.")
        seen.add(lower_name)
        if " " in name or ":" in name or not _is_printable_ascii(name):
            raise ValueError(f"Disallowed HTTP header name '{name}'.")
        if not _is_printable_ascii(str(value)):
            raise ValueError(f"Disallowed HTTP '{name}' header value '{value}'.")
        merged[name] = str(value)
    return merged


def _is_printable_ascii(text: str) -> bool:
    return all(0x20 <= ord(char) <= 0x7F for char in text)


class SharpSpringClient:
    """Sends JSON envelopes to the Sharpspring endpoint over HTTPS."""

    def __init__(
        self,
        account_id: str,
        secret_key: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 30.0,
        base_url: str = SHARPSPRING_BASE_URL,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        for name, value in (("account_id", account_id), ("secret_key", secret_key)):
            if not value:
                raise ValueError(f"Required configuration parameter for {type(self).__name__} missing: {name}.")
        if headers is not None and not isinstance(headers, Mapping):
            raise ValueError(f"Non-mapping 'headers' option passed to {type(self).__name__}.")

        custom = dict(headers or {})
        custom_lower = {name.lower() for name in custom}
        defaults = {name: value for name, value in _DEFAULT_HEADERS.items() if name.lower() not in custom_lower}
        self.headers = _validate_headers({**custom, **defaults})

        self.account_id = account_id
        self.secret_key = secret_key
        self.timeout = timeout
        self.base_url = base_url
        self._session = session or requests.Session()
        self._rate_limiter = rate_limiter or RateLimiter(None)

    @property
    def url(self) -> str:
        return self.base_url

    def _query(self) -> Dict[str, str]:
        return {"accountID": self.account_id, "secretKey": self.secret_key}

    def new_request_id(self) -> str:
        return uuid.uuid4().hex

    def send(self, body: bytes) -> Tuple[int, str]:
        """POST a raw request body; return the HTTP status and response text."""

        self._rate_limiter.acquire()
        try:
            response = self._session.post(
                self.base_url,
                params=self._query(),
                data=body,
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"HTTP request to Sharpspring failed: {exc}", 1000) from exc
        return response.status_code, response.text

    def call(self, method: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Execute a REST API method and return the decoded, sanitized envelope."""

        request_id = self.new_request_id()
        LOGGER.debug("Calling Sharpspring method %s (request %s)", method, request_id)
        status, text = self.send(encode_request(method, params, request_id))
        if status not in (200, 201):
            raise TransportError(f"HTTP code {status} / Response body: {text!r}", status + 1000)
        return decode_response(text, request_id)


__all__ = [
    "SHARPSPRING_BASE_URL",
    "SharpSpringClient",
    "decode_response",
    "encode_request",
    "sanitize_tree",
    "sanitize_value",
]
