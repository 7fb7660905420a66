"""Cancellable, integrity-checked HTTP download for registry backends."""

from __future__ import annotations

import hashlib
import json
import os
import socket
from http.client import HTTPException
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from rootstock.context import BuildContext
from rootstock.errors import ConfigError, TransientError

CHUNK_SIZE = 1 << 20
DEFAULT_TIMEOUT = 60.0
RETRYABLE_STATUS = frozenset({408, 429})


def download(
    ctx: BuildContext,
    url: str,
    *,
    dest: Path,
    backend: str,
    sha256: str = "",
    chunk_size: int = CHUNK_SIZE,
) -> Path:
    """Stream *url* to *dest*, checking *ctx* between chunks."""
    ctx.check("download")
    dest.parent.mkdir(parents=True, exist_ok=True)
    temp_path = dest.with_name(dest.name + ".tmp")
    digest = hashlib.sha256()
    try:
        with _open(ctx, url, backend=backend) as response, temp_path.open("wb") as handle:
            while True:
                ctx.check("download")
                chunk = response.read(chunk_size)
                if not chunk:
                    break
                digest.update(chunk)
                handle.write(chunk)
    except (OSError, HTTPException) as exc:
        temp_path.unlink(missing_ok=True)
        if isinstance(exc, (URLError, socket.timeout, ConnectionError, HTTPException)):
            raise TransientError(
                "Download was interrupted.",
                context={"backend": backend, "operation": "download", "url": url, "cause": str(exc)},
            ) from exc
        raise
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise

    actual = digest.hexdigest()
    if sha256 and actual != sha256.lower():
        temp_path.unlink(missing_ok=True)
        raise TransientError(
            "Downloaded content hash mismatch.",
            hint="Verify the checksum or retry; the mirror may have served a partial file.",
            context={
                "backend": backend,
                "operation": "download",
                "url": url,
                "expected": sha256,
                "actual": actual,
            },
        )
    os.replace(temp_path, dest)
    return dest


def fetch_json(ctx: BuildContext, url: str, *, backend: str) -> dict[str, Any]:
    ctx.check("fetch_json")
    try:
        with _open(ctx, url, backend=backend) as response:
            payload = response.read()
    except (URLError, socket.timeout, ConnectionError, HTTPException) as exc:
        raise TransientError(
            "Registry request failed.",
            context={"backend": backend, "operation": "fetch_json", "url": url, "cause": str(exc)},
        ) from exc
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise TransientError(
            "Registry returned invalid JSON.",
            context={"backend": backend, "operation": "fetch_json", "url": url},
        ) from exc
    if not isinstance(parsed, dict):
        raise TransientError(
            "Registry returned an unexpected payload.",
            context={"backend": backend, "operation": "fetch_json", "url": url},
        )
    return parsed


def _open(ctx: BuildContext, url: str, *, backend: str) -> Any:
    timeout = DEFAULT_TIMEOUT
    remaining = ctx.remaining()
    if remaining is not None:
        timeout = max(min(timeout, remaining), 0.001)
    request = Request(url, headers={"User-Agent": "rootstock"})
    try:
        return urlopen(request, timeout=timeout)  # noqa: S310 - registry URLs come from the definition
    except HTTPError as exc:
        context = {"backend": backend, "url": url, "status": str(exc.code)}
        if exc.code >= 500 or exc.code in RETRYABLE_STATUS:
            raise TransientError(
                f"Registry responded with HTTP {exc.code}.",
                hint="The registry may be temporarily unavailable; retry the build.",
                context=context,
            ) from exc
        raise ConfigError(
            f"Registry rejected the request with HTTP {exc.code}.",
            hint="Check the image reference in the definition header.",
            context=context,
        ) from exc
    except ValueError as exc:
        raise ConfigError(
            "Invalid download URL.",
            context={"backend": backend, "url": url},
        ) from exc


__all__ = ["download", "fetch_json"]
