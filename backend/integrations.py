"""
Timewise - Integration Helpers
Errors and HTTP plumbing shared by the Google Calendar and Canvas importers.
"""

from contextlib import asynccontextmanager
from typing import Optional, AsyncIterator

import httpx


class SyncError(Exception):
    """An import from an external service failed."""


class IntegrationNotConnected(SyncError):
    pass


class IntegrationTokenExpired(SyncError):
    pass


@asynccontextmanager
async def http_client(client: Optional[httpx.AsyncClient], timeout: float) -> AsyncIterator[httpx.AsyncClient]:
    """Use the caller's client as-is, or open (and close) a fresh one."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


def next_link(response: httpx.Response) -> Optional[str]:
    """URL of the next page from a `Link: <...>; rel="next"` header."""
    return response.links.get("next", {}).get("url")
