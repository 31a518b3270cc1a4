"""
Request/response values exchanged with the edge transport.

The wire shape is the Lambda@Edge viewer-request one: headers are keyed by
lower-case name and hold lists of {"key": ..., "value": ...} entries.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs

NO_CACHE_HEADERS = {
    "cache-control": ["no-cache, no-store, max-age=0, must-revalidate"],
    "pragma": ["no-cache"],
}

_HEADER_KEYS = {
    "cache-control": "Cache-Control",
    "content-type": "Content-Type",
    "cookie": "Cookie",
    "host": "Host",
    "location": "Location",
    "pragma": "Pragma",
    "set-cookie": "Set-Cookie",
}


def _header_key(name: str) -> str:
    return _HEADER_KEYS.get(name, "-".join(part.capitalize() for part in name.split("-")))


@dataclass(frozen=True)
class EdgeRequest:
    """
    An inbound viewer request.

    Attributes:
        uri: Request path (e.g., "/private/page")
        querystring: Raw query string without the leading "?"
        headers: Header values by lower-case name
        raw: The original event request, returned untouched when forwarding
    """

    uri: str
    querystring: str = ""
    headers: Mapping[str, list[str]] = field(default_factory=dict)
    raw: Mapping[str, Any] | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_event(cls, event: Mapping[str, Any]) -> "EdgeRequest":
        """
        Build a request from a Lambda@Edge event or a bare CloudFront request.

        Example:
            request = EdgeRequest.from_event({
                "Records": [{"cf": {"request": {
                    "uri": "/",
                    "querystring": "",
                    "headers": {"host": [{"key": "Host", "value": "example.com"}]},
                }}}]
            })
        """
        request = event
        if "Records" in event:
            request = event["Records"][0]["cf"]["request"]

        headers: dict[str, list[str]] = {}
        for name, entries in (request.get("headers") or {}).items():
            headers[name.lower()] = [entry["value"] for entry in entries]

        return cls(
            uri=request.get("uri") or "/",
            querystring=request.get("querystring") or "",
            headers=headers,
            raw=request,
        )

    def to_event(self) -> dict[str, Any]:
        """The request in Lambda@Edge shape (the original one, if there was one)."""
        if self.raw is not None:
            return dict(self.raw)
        return {
            "uri": self.uri,
            "querystring": self.querystring,
            "headers": {
                name: [{"key": _header_key(name), "value": value} for value in values]
                for name, values in self.headers.items()
            },
        }

    @property
    def has_host(self) -> bool:
        values = self.headers.get("host") or []
        return bool(values and values[0])

    @property
    def host(self) -> str:
        """First Host header value. Viewer requests always carry one."""
        if not self.has_host:
            raise ValueError("Request has no Host header")
        return self.headers["host"][0]

    @property
    def cookie_headers(self) -> list[str]:
        return list(self.headers.get("cookie") or [])

    @property
    def params(self) -> dict[str, str]:
        """Query parameters; the first value wins for repeated names."""
        parsed = parse_qs(self.querystring, keep_blank_values=True)
        return {name: values[0] for name, values in parsed.items()}

    @property
    def path_with_query(self) -> str:
        if self.querystring:
            return f"{self.uri}?{self.querystring}"
        return self.uri


@dataclass(frozen=True)
class EdgeResponse:
    """
    A response generated at the edge instead of forwarding to the origin.

    Attributes:
        status: HTTP status code
        headers: Header values by lower-case name
        body: Optional response body
    """

    status: int
    headers: Mapping[str, list[str]] = field(default_factory=dict)
    body: str | None = None

    @classmethod
    def redirect(cls, location: str, cookies: Iterable[str] = ()) -> "EdgeResponse":
        """A non-cacheable 302 redirect, optionally setting cookies."""
        headers = {"location": [location]}
        headers.update({name: list(values) for name, values in NO_CACHE_HEADERS.items()})
        cookies = list(cookies)
        if cookies:
            headers["set-cookie"] = cookies
        return cls(status=302, headers=headers)

    @classmethod
    def bad_request(cls, body: str) -> "EdgeResponse":
        return cls(status=400, headers={"content-type": ["text/plain"]}, body=body)

    @property
    def location(self) -> str | None:
        values = self.headers.get("location") or []
        return values[0] if values else None

    @property
    def set_cookies(self) -> list[str]:
        return list(self.headers.get("set-cookie") or [])

    def to_event(self) -> dict[str, Any]:
        """The response in Lambda@Edge shape."""
        event: dict[str, Any] = {
            "status": str(self.status),
            "headers": {
                name: [{"key": _header_key(name), "value": value} for value in values]
                for name, values in self.headers.items()
            },
        }
        if self.body is not None:
            event["body"] = self.body
        return event
