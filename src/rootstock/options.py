"""Build configuration and policy enforcement helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from rootstock.errors import ConfigError

Arch = Literal["amd64", "arm64", "ppc64le", "s390x"]
NetworkMode = Literal["online", "offline"]

DEFAULT_LIBRARY_URL = "https://library.sylabs.io"
DEFAULT_SHUB_URL = "https://singularity-hub.org"


@dataclass(frozen=True, slots=True)
class BuildOptions:
    tmp_dir: Path | None = None
    arch: Arch = "amd64"
    network_mode: NetworkMode = "online"
    require_integrity: bool = False
    library_url: str = DEFAULT_LIBRARY_URL
    shub_url: str = DEFAULT_SHUB_URL
    keep_staging: bool = False
    poll_interval: float = 0.1


def ensure_network_allowed(*, options: BuildOptions, operation: str, backend: str) -> None:
    if options.network_mode == "offline":
        raise ConfigError(
            "Network operations are disabled by build options.",
            hint="Switch network_mode to 'online' or use a local source.",
            context={"operation": operation, "backend": backend},
        )


__all__ = [
    "DEFAULT_LIBRARY_URL",
    "DEFAULT_SHUB_URL",
    "Arch",
    "BuildOptions",
    "NetworkMode",
    "ensure_network_allowed",
]
