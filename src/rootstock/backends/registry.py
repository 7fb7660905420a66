"""Source-kind dispatch: ``bootstrap`` header value to a new, unbound backend."""

from __future__ import annotations

from rootstock.backends.base import BackendKind, StagedBackend
from rootstock.backends.bootstrap import ArchBackend, DebootstrapBackend, YumBackend, ZypperBackend
from rootstock.backends.busybox import BusyBoxBackend
from rootstock.backends.local import LocalImageBackend
from rootstock.backends.oci import OCIBackend, is_oci_transport
from rootstock.backends.registries import LibraryBackend, OrasBackend, ShubBackend
from rootstock.backends.scratch import ScratchBackend
from rootstock.definition import Definition
from rootstock.errors import ConfigError
from rootstock.observability import StructuredLogger
from rootstock.options import BuildOptions

SOURCE_KEY = "bootstrap"

# Exact literal matches, checked before the OCI transport predicate.
LITERAL_SOURCES: dict[str, type[StagedBackend]] = {
    "library": LibraryBackend,
    "oras": OrasBackend,
    "shub": ShubBackend,
    "busybox": BusyBoxBackend,
    "debootstrap": DebootstrapBackend,
    "arch": ArchBackend,
    "localimage": LocalImageBackend,
    "yum": YumBackend,
    "dnf": YumBackend,
    "zypper": ZypperBackend,
    "scratch": ScratchBackend,
}


def backend_kind(source: str) -> BackendKind:
    """Classify *source* without constructing a backend."""
    backend_class = LITERAL_SOURCES.get(source)
    if backend_class is not None:
        return backend_class.kind
    if is_oci_transport(source):
        return BackendKind.OCI
    raise ConfigError(
        f"unsupported source kind {source}",
        hint="Use one of: " + ", ".join(sorted(LITERAL_SOURCES)) + ", or an OCI transport.",
        context={"key": SOURCE_KEY, "value": source},
    )


def select_backend(
    definition: Definition,
    *,
    options: BuildOptions | None = None,
    logger: StructuredLogger | None = None,
) -> StagedBackend:
    source = definition.header.get(SOURCE_KEY, "").strip()
    if not source:
        raise ConfigError(
            "missing source specification",
            hint="Add a `Bootstrap:` line to the definition header.",
            context={"key": SOURCE_KEY},
        )

    options = options or BuildOptions()
    logger = logger if logger is not None else StructuredLogger()
    kind = backend_kind(source)
    if kind is BackendKind.OCI:
        return OCIBackend(options=options, logger=logger, transport=source)
    return LITERAL_SOURCES[source](options=options, logger=logger)


__all__ = ["LITERAL_SOURCES", "SOURCE_KEY", "backend_kind", "select_backend"]
