"""Two-phase backend contract (fetch, then pack) and its shared state machine."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar, Protocol, runtime_checkable

from rootstock.bundle import Bundle
from rootstock.context import BuildContext
from rootstock.errors import BackendStateError, FatalError, RootstockError
from rootstock.extract import insert_base_files
from rootstock.metadata import write_metadata
from rootstock.observability import StructuredLogger
from rootstock.options import BuildOptions, ensure_network_allowed


class BackendKind(StrEnum):
    LIBRARY = "library"
    ORAS = "oras"
    SHUB = "shub"
    OCI = "oci"
    BUSYBOX = "busybox"
    DEBOOTSTRAP = "debootstrap"
    ARCH = "arch"
    YUM = "yum"
    ZYPPER = "zypper"
    LOCALIMAGE = "localimage"
    SCRATCH = "scratch"


class BackendState(StrEnum):
    UNBOUND = "unbound"
    FETCHING = "fetching"
    FETCHED = "fetched"
    PACKING = "packing"
    PACKED = "packed"
    FAILED = "failed"


@runtime_checkable
class Conveyor(Protocol):
    def fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        """Acquire external content into *bundle*."""


@runtime_checkable
class Packer(Protocol):
    def pack(self, ctx: BuildContext) -> Bundle:
        """Turn fetched content into the final rootfs and metadata layout."""


@runtime_checkable
class Backend(Conveyor, Packer, Protocol):
    kind: ClassVar[BackendKind]
    state: BackendState
    logger: StructuredLogger


@dataclass(slots=True)
class StagedBackend:
    """Base implementation guarding phase order for every concrete backend.

    Subclasses implement ``_fetch`` and ``_pack``; this class owns the state
    transitions, cancellation checks at phase boundaries, error wrapping,
    base files, and metadata.
    """

    kind: ClassVar[BackendKind]
    network: ClassVar[bool] = False
    base_files: ClassVar[bool] = True

    options: BuildOptions = field(default_factory=BuildOptions)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    state: BackendState = field(default=BackendState.UNBOUND, init=False)
    _bundle: Bundle | None = field(default=None, init=False, repr=False)

    @property
    def bundle(self) -> Bundle | None:
        return self._bundle

    def requires_network(self) -> bool:
        return self.network

    def fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        if self.state is not BackendState.UNBOUND:
            raise BackendStateError(
                f"fetch() is not allowed in state `{self.state}`.",
                hint="Backends are single-use; select a new backend for a new build.",
                context={"backend": self.kind.value, "state": self.state.value},
            )
        ctx.check("fetch")
        if self.requires_network():
            ensure_network_allowed(options=self.options, operation="fetch", backend=self.kind.value)
        bundle.bind(self, kind=self.kind.value)
        self._bundle = bundle
        self.state = BackendState.FETCHING
        self._log("fetch_start", "fetch", "Starting fetch phase.")
        self._guarded("fetch", self._fetch, ctx, bundle)
        if not bundle.rootfs_path.exists():
            self._guarded("fetch", bundle.rootfs_path.mkdir, parents=True, exist_ok=True)
        self.state = BackendState.FETCHED
        self._log("fetch_complete", "fetch", "Completed fetch phase.")

    def pack(self, ctx: BuildContext) -> Bundle:
        if self.state is not BackendState.FETCHED or self._bundle is None:
            raise BackendStateError(
                _pack_misuse_message(self.state),
                hint="Call fetch() successfully on the same backend instance first.",
                context={"backend": self.kind.value, "state": self.state.value},
            )
        ctx.check("pack")
        bundle = self._bundle
        self.state = BackendState.PACKING
        self._log("pack_start", "pack", "Starting pack phase.")
        self._guarded("pack", self._pack, ctx, bundle)
        self._guarded("pack", ctx.check, "pack")
        self._guarded("pack", self._finalize, bundle)
        self.state = BackendState.PACKED
        self._log("pack_complete", "pack", "Completed pack phase.")
        return bundle

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        raise NotImplementedError

    def _pack(self, ctx: BuildContext, bundle: Bundle) -> None:
        raise NotImplementedError

    def _finalize(self, bundle: Bundle) -> None:
        if self.base_files:
            insert_base_files(bundle.rootfs_path)
        write_metadata(bundle)
        if not self.options.keep_staging:
            shutil.rmtree(bundle.staging_path, ignore_errors=True)

    def _guarded(self, phase: str, func: Any, *args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)
        except RootstockError as exc:
            self.state = BackendState.FAILED
            exc.add_context(backend=self.kind.value, phase=phase)
            self._log(f"{phase}_failed", phase, str(exc.message), level="error", extra=exc.to_dict())
            raise
        except OSError as exc:
            self.state = BackendState.FAILED
            error = FatalError(
                f"Host filesystem error during {phase}.",
                hint="Check permissions and free space of the build directory.",
                context={
                    "backend": self.kind.value,
                    "phase": phase,
                    "path": str(exc.filename or ""),
                    "cause": exc.strerror or str(exc),
                },
            )
            self._log(f"{phase}_failed", phase, error.message, level="error", extra=error.to_dict())
            raise error from exc
        except Exception:
            self.state = BackendState.FAILED
            raise

    def _log(
        self,
        operation: str,
        phase: str | None,
        message: str,
        *,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.logger.log(
            operation=operation,
            backend=self.kind.value,
            phase=phase,
            message=message,
            level=level,
            extra=extra,
        )


def _pack_misuse_message(state: BackendState) -> str:
    if state is BackendState.UNBOUND:
        return "pack() called before fetch()."
    if state is BackendState.PACKED:
        return "pack() called twice on the same backend."
    if state is BackendState.FAILED:
        return "pack() called after a failed phase."
    return f"pack() is not allowed in state `{state}`."


__all__ = [
    "Backend",
    "BackendKind",
    "BackendState",
    "Conveyor",
    "Packer",
    "StagedBackend",
]
