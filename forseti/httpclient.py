"""HTTP and file access used to fetch external data."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from urllib.parse import urlsplit
from urllib.request import url2pathname

import requests


class HttpError(Exception):
    """Raised when a remote resource cannot be fetched."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


def _seconds(timeout):
    if timeout is None:
        return None
    seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
    return seconds if seconds > 0 else None


def fetch(url, token="", header="Authorization", timeout=None):
    """GET `url`, sending `token` in `header` when given, and return the body."""
    headers = {header: token} if token else {}
    try:
        response = requests.get(url, headers=headers, timeout=_seconds(timeout))
    except requests.RequestException as exc:
        raise HttpError(f"request to {url} failed: {exc}") from exc
    if not 200 <= response.status_code < 300:
        raise HttpError(
            f"unexpected status code {response.status_code} from {url}", response.status_code
        )
    return response.content


def fetch_json(url, token="", header="Authorization", timeout=None):
    """GET `url` and decode its body as JSON."""
    return json.loads(fetch(url, token, header, timeout))


def read_uri(uri, timeout=None):
    """Read the bytes behind a file:// or http(s):// URI."""
    parsed = urlsplit(uri)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path)).read_bytes()
    if parsed.scheme in ("http", "https"):
        return fetch(uri, timeout=timeout)
    raise ValueError(f"unsupported URI scheme: {parsed.scheme!r}")