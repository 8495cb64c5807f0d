"""DigitalOcean API client wrapper using pydo SDK."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydo import Client

from dropfleet.core.exceptions import RemoteAPIError


def get_client(token: str) -> Client:
    """Create authenticated pydo client.

    Args:
        token: DigitalOcean API token.

    Returns:
        Authenticated pydo Client instance.
    """
    return Client(token=token)


def call_api[T](operation: str, fn: Callable[[], T]) -> T:
    """Run an API call, converting any failure into RemoteAPIError."""
    try:
        return fn()
    except RemoteAPIError:
        raise
    except Exception as e:
        raise RemoteAPIError(operation, str(e)) from e


def paginate(list_fn: Callable[..., dict[str, Any]], key: str, per_page: int, **kwargs: Any) -> list[dict[str, Any]]:
    """Collect every page of a list endpoint.

    Follows ``links.pages.next`` until the API stops returning one.
    """
    items: list[dict[str, Any]] = []

    page = 1
    while True:
        resp = list_fn(page=page, per_page=per_page, **kwargs)
        items.extend(resp.get(key, []))

        links = resp.get("links") or {}
        pages = links.get("pages") or {}
        if not pages.get("next"):
            break
        page += 1

    return items
