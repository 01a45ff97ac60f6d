"""
Client context resolution.

Turns raw request metadata into the RequestContext the engine consumes.
Runs in the caller before evaluation; the engine never sees headers.

Example:
    request = ClientContextResolver.resolve(
        headers={"X-Forwarded-For": "10.1.2.3, 172.16.0.1", "User-Agent": "curl/8.0"},
        remote_addr="172.16.0.1",
    )
    request.client_ip  # "10.1.2.3"
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping, Optional

from sharegate.access.models import RequestContext

FORWARDED_FOR_HEADER = "x-forwarded-for"
USER_AGENT_HEADER = "user-agent"


class ClientContextResolver:
    """Resolves client IP, user agent and timestamp from request metadata."""

    @classmethod
    def client_ip(
        cls,
        headers: Optional[Mapping[str, str]],
        remote_addr: Optional[str] = None,
    ) -> Optional[str]:
        """
        First X-Forwarded-For entry, falling back to the socket address.

        Header names are matched case-insensitively.
        """
        forwarded = cls._header(headers, FORWARDED_FOR_HEADER)
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        return remote_addr or None

    @classmethod
    def resolve(
        cls,
        headers: Optional[Mapping[str, str]],
        remote_addr: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        request_uri: Optional[str] = None,
    ) -> RequestContext:
        """Build the RequestContext for one request."""
        return RequestContext(
            client_ip=cls.client_ip(headers, remote_addr),
            user_agent=cls._header(headers, USER_AGENT_HEADER),
            request_uri=request_uri,
            timestamp=timestamp or datetime.now(timezone.utc),
        )

    @staticmethod
    def _header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
        if not headers:
            return None
        for key, value in headers.items():
            if key.lower() == name:
                return value
        return None
