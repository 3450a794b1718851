from __future__ import annotations

from typing import Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import FetchError

Fetcher = Callable[..., bytes]

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml;q=0.9, */*;q=0.8"
PAGE_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


def fetch_url(url: str, *, headers: dict[str, str], timeout: int) -> bytes:
    """GET ``url`` once and return the body; any failure raises FetchError."""
    request = Request(url, headers=headers)
    try:
        with urlopen(request, timeout=timeout) as response:
            status = response.getcode()
            content = response.read()
    except HTTPError as exc:
        raise FetchError(url, f"HTTP {exc.code} {exc.reason}", status=exc.code) from exc
    except URLError as exc:
        raise FetchError(url, str(exc.reason)) from exc
    except (TimeoutError, OSError) as exc:
        raise FetchError(url, str(exc) or exc.__class__.__name__) from exc
    if status is not None and not 200 <= status < 300:
        raise FetchError(url, f"HTTP {status}", status=status)
    return content
