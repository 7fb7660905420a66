"""Build orchestration: dispatch, then fetch, then pack, under one context."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from rootstock.backends.base import StagedBackend
from rootstock.backends.registry import select_backend
from rootstock.bundle import Bundle
from rootstock.context import BuildContext
from rootstock.definition import Definition
from rootstock.errors import ConfigError, FatalError, RootstockError
from rootstock.observability import StructuredLogger
from rootstock.options import BuildOptions

Selector = Callable[..., StagedBackend]


@dataclass(slots=True)
class BuildPipeline:
    """Runs one backend's two phases against a fresh bundle.

    The pipeline never retries and never adds its own timeout: the caller's
    context is passed unchanged to both phases. On failure the bundle is
    marked unusable and attached to the raised error as ``error.bundle``;
    removing it is left to the caller.
    """

    options: BuildOptions = field(default_factory=BuildOptions)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    selector: Selector = select_backend

    def build(self, ctx: BuildContext, definition: Definition) -> Bundle:
        try:
            backend = self.selector(definition, options=self.options, logger=self.logger)
        except ConfigError as exc:
            exc.add_context(phase="dispatch")
            self._log("dispatch_failed", None, "dispatch", exc.message, level="error", extra=exc.to_dict())
            raise
        kind = backend.kind.value
        self._log("dispatch", kind, "dispatch", "Selected backend.")

        ctx.check("build")
        bundle = Bundle.create(definition, options=self.options)
        self._log("bundle_create", kind, "dispatch", "Allocated bundle.", extra={"root": str(bundle.root)})

        self._run_phase("fetch", backend, bundle, lambda: backend.fetch(ctx, bundle))
        self._run_phase("pack", backend, bundle, lambda: backend.pack(ctx))
        self._log("build_complete", kind, None, "Build completed.", extra={"rootfs": str(bundle.rootfs_path)})
        return bundle

    def _run_phase(
        self,
        phase: str,
        backend: StagedBackend,
        bundle: Bundle,
        call: Callable[[], object],
    ) -> None:
        kind = backend.kind.value
        try:
            call()
        except RootstockError as exc:
            self._fail(exc, phase=phase, kind=kind, bundle=bundle)
            raise
        except OSError as exc:
            error = FatalError(
                f"Host filesystem error during {phase}.",
                context={"path": str(exc.filename or ""), "cause": exc.strerror or str(exc)},
            )
            self._fail(error, phase=phase, kind=kind, bundle=bundle)
            raise error from exc
        except Exception as exc:
            error = FatalError(
                f"Backend failed unexpectedly during {phase}.",
                hint="This is a backend defect; the cause is chained to this error.",
                context={"cause": f"{type(exc).__name__}: {exc}"},
            )
            self._fail(error, phase=phase, kind=kind, bundle=bundle)
            raise error from exc

    def _fail(self, exc: RootstockError, *, phase: str, kind: str, bundle: Bundle) -> None:
        exc.add_context(phase=phase, backend=kind)
        exc.bundle = bundle
        bundle.mark_unusable(f"{phase} failed: {exc.message}")
        self._log(f"{phase}_failed", kind, phase, exc.message, level="error", extra=exc.to_dict())

    def _log(
        self,
        operation: str,
        backend: str | None,
        phase: str | None,
        message: str,
        *,
        level: str = "info",
        extra: dict[str, object] | None = None,
    ) -> None:
        self.logger.log(
            operation=operation,
            backend=backend,
            phase=phase,
            message=message,
            level=level,
            extra=extra,
        )


def build(
    ctx: BuildContext,
    definition: Definition,
    *,
    options: BuildOptions | None = None,
    logger: StructuredLogger | None = None,
) -> Bundle:
    """Build *definition* into a new bundle; the sole pipeline entry point."""
    pipeline = BuildPipeline(
        options=options or BuildOptions(),
        logger=logger if logger is not None else StructuredLogger(),
    )
    return pipeline.build(ctx, definition)


__all__ = ["BuildPipeline", "build"]
