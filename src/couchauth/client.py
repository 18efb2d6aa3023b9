"""Minimal CouchDB HTTP client.

Every call carries its own HTTP Basic credentials (or none). Non-success
statuses are classified once, here, into the typed errors of
``couchauth.exceptions``; callers never inspect raw status codes.
"""

from __future__ import annotations

import base64
import http.client
import json
import socket
from dataclasses import dataclass
from typing import Any
from urllib import error, request

from .exceptions import (
    BulkItemError,
    ConflictError,
    DeniedError,
    NotFoundError,
    ResponseError,
    TransportError,
)
from .logging_config import get_logger
from .models import Credentials, Principal

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class Request:
    """One operation against the server.

    ``address`` is the exact URL sent; a revision token is appended as a
    ``rev`` query parameter.
    """

    method: str
    url: str
    credentials: Credentials | None = None
    payload: Any = None
    rev: str | None = None

    @property
    def address(self) -> str:
        if self.rev is None:
            return self.url
        return f"{self.url}?rev={self.rev}"

    @property
    def principal(self) -> str | None:
        return self.credentials.username if self.credentials else None


@dataclass(frozen=True)
class Response:
    method: str
    url: str
    status: int
    body: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def field(self, name: str) -> Any:
        if isinstance(self.body, dict):
            return self.body.get(name)
        return None


def basic_auth_header(credentials: Credentials) -> str:
    raw = f"{credentials.username}:{credentials.password}".encode()
    return "Basic " + base64.b64encode(raw).decode("ascii")


def _decode_body(payload: bytes) -> Any:
    if not payload:
        return None
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return payload.decode("utf-8", errors="replace")


def classify_error(method: str, url: str, status: int, body: Any) -> ResponseError:
    """Map a non-success response to its typed error."""
    error_name = body.get("error") if isinstance(body, dict) else None
    reason = body.get("reason") if isinstance(body, dict) else None
    kwargs = {
        "method": method,
        "url": url,
        "status": status,
        "error": error_name,
        "reason": reason,
        "body": body,
    }
    if status in (401, 403):
        return DeniedError(**kwargs)
    if status == 404:
        return NotFoundError(**kwargs)
    if status in (409, 412):
        return ConflictError(**kwargs)
    return ResponseError(**kwargs)


def raise_for_bulk_errors(results: Any) -> None:
    """Check a ``_bulk_docs`` result list, raising BulkItemError on any rejected item."""
    if not isinstance(results, list):
        raise BulkItemError([("<response>", "bad_response", "bulk result is not a list")])
    failures: list[tuple[str, str, str]] = []
    for entry in results:
        if isinstance(entry, dict) and entry.get("error"):
            failures.append(
                (
                    str(entry.get("id", "<unknown>")),
                    str(entry["error"]),
                    str(entry.get("reason", "")),
                )
            )
    if failures:
        logger.warning("bulk_items_rejected", items=[item_id for item_id, _, _ in failures])
        raise BulkItemError(failures)


class CouchClient:
    """Synchronous JSON-over-HTTP client. Safe to share across worker threads."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def send(self, req: Request) -> Response:
        """Send a request and return its response, or raise a typed error.

        Raises:
            DeniedError: 401/403
            NotFoundError: 404
            ConflictError: 409/412
            ResponseError: any other non-success status
            TransportError: no HTTP response was received
        """
        address = req.address
        data = None
        headers = {"Accept": "application/json"}
        if req.payload is not None:
            data = json.dumps(req.payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if req.credentials is not None:
            headers["Authorization"] = basic_auth_header(req.credentials)

        http_request = request.Request(address, data=data, headers=headers, method=req.method)
        try:
            with request.urlopen(http_request, timeout=self.timeout) as response:
                status = response.status
                payload = response.read()
        except error.HTTPError as exc:
            body = _decode_body(exc.read())
            logger.debug(
                "couch_request_rejected",
                method=req.method,
                url=address,
                status=exc.code,
                principal=req.principal,
            )
            raise classify_error(req.method, address, exc.code, body) from exc
        except error.URLError as exc:
            raise TransportError(method=req.method, url=address, reason=str(exc.reason)) from exc
        except (TimeoutError, socket.timeout) as exc:
            raise TransportError(method=req.method, url=address, reason="timed out") from exc
        except (ConnectionError, http.client.HTTPException) as exc:
            reason = str(exc) or type(exc).__name__
            raise TransportError(method=req.method, url=address, reason=reason) from exc

        logger.debug(
            "couch_request_ok",
            method=req.method,
            url=address,
            status=status,
            principal=req.principal,
        )
        return Response(method=req.method, url=address, status=status, body=_decode_body(payload))

    def get(self, url: str, credentials: Credentials | None = None) -> Response:
        return self.send(Request("GET", url, credentials))

    def put(
        self, url: str, payload: Any = None, credentials: Credentials | None = None
    ) -> Response:
        return self.send(Request("PUT", url, credentials, payload))

    def post(self, url: str, payload: Any, credentials: Credentials | None = None) -> Response:
        return self.send(Request("POST", url, credentials, payload))

    def delete(
        self, url: str, credentials: Credentials | None = None, rev: str | None = None
    ) -> Response:
        return self.send(Request("DELETE", url, credentials, rev=rev))

    def create_admin(self, url: str, password: str) -> Response:
        """Register a server admin. The config API takes the password as a JSON string."""
        return self.put(url, password)

    def create_principal(self, url: str, principal: Principal) -> Response:
        return self.put(url, principal.to_user_doc())

    def bulk_insert(
        self, url: str, docs: list[dict[str, Any]], credentials: Credentials | None = None
    ) -> Response:
        response = self.post(url, {"docs": docs}, credentials)
        raise_for_bulk_errors(response.body)
        return response
