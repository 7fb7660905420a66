import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

import pytest

from rootstock import BuildPipeline, build
from rootstock.backends import BackendKind, BackendState, StagedBackend
from rootstock.bundle import Bundle
from rootstock.context import BuildContext
from rootstock.definition import Definition, Section
from rootstock.errors import CancelledError, ConfigError, FatalError, TransientError
from rootstock.observability import StructuredLogger
from rootstock.options import BuildOptions


@dataclass(slots=True)
class _ScriptedBackend(StagedBackend):
    kind: ClassVar[BackendKind] = BackendKind.DEBOOTSTRAP

    fetch_errors: list[Exception] = field(default_factory=list)
    seen_contexts: list[BuildContext] = field(default_factory=list)

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        self.seen_contexts.append(ctx)
        (bundle.rootfs_path / "bin").mkdir()
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        (bundle.rootfs_path / "bin" / "sh").write_text("#!shell", encoding="utf-8")

    def _pack(self, ctx: BuildContext, bundle: Bundle) -> None:
        self.seen_contexts.append(ctx)


def test_scratch_build_produces_empty_rootfs(ctx: BuildContext, options: BuildOptions) -> None:
    bundle = build(ctx, Definition.from_header(bootstrap="scratch"), options=options)

    assert bundle.usable is True
    assert bundle.rootfs_path.is_dir()
    assert list(bundle.rootfs_path.iterdir()) == []
    assert (bundle.metadata_path / "runscript").exists()
    provenance = json.loads((bundle.metadata_path / "provenance.json").read_text(encoding="utf-8"))
    assert provenance["backend"] == "scratch"


def test_bogus_source_fails_with_config_error_naming_it(ctx: BuildContext, options: BuildOptions) -> None:
    with pytest.raises(ConfigError) as excinfo:
        build(ctx, Definition.from_header(bootstrap="bogus"), options=options)

    assert "bogus" in str(excinfo.value)
    assert excinfo.value.bundle is None
    assert not Path(options.tmp_dir or "").exists()


def test_empty_source_fails_with_config_error(ctx: BuildContext, options: BuildOptions) -> None:
    with pytest.raises(ConfigError, match="missing source specification") as excinfo:
        build(ctx, Definition.from_header(bootstrap=""), options=options)

    assert type(excinfo.value) is ConfigError
    assert excinfo.value.context["phase"] == "dispatch"


def test_cancel_before_fetch_creates_no_content(options: BuildOptions) -> None:
    ctx = BuildContext.background()
    ctx.cancel()
    backend = _ScriptedBackend(options=options)
    pipeline = BuildPipeline(options=options, selector=lambda definition, **_: backend)

    with pytest.raises(CancelledError):
        pipeline.build(ctx, Definition.from_header(bootstrap="debootstrap"))

    assert backend.seen_contexts == []
    assert not Path(options.tmp_dir or "").exists()


def test_context_is_passed_unmodified_to_both_phases(ctx: BuildContext, options: BuildOptions) -> None:
    backend = _ScriptedBackend(options=options)
    pipeline = BuildPipeline(options=options, selector=lambda definition, **_: backend)

    pipeline.build(ctx, Definition.from_header(bootstrap="debootstrap"))

    assert backend.seen_contexts == [ctx, ctx]
    assert backend.state is BackendState.PACKED


def test_fetch_failure_marks_bundle_unusable_and_adds_context(
    ctx: BuildContext,
    options: BuildOptions,
) -> None:
    logger = StructuredLogger()
    backend = _ScriptedBackend(options=options, fetch_errors=[TransientError("mirror timed out")])
    pipeline = BuildPipeline(options=options, logger=logger, selector=lambda definition, **_: backend)

    with pytest.raises(TransientError) as excinfo:
        pipeline.build(ctx, Definition.from_header(bootstrap="debootstrap"))

    error = excinfo.value
    assert error.context["phase"] == "fetch"
    assert error.context["backend"] == "debootstrap"
    assert error.bundle is not None
    assert error.bundle.usable is False
    assert "mirror timed out" in (error.bundle.failure or "")
    assert error.bundle.root.exists()
    assert [record["operation"] for record in logger.records_for_phase("fetch")][-1] == "fetch_failed"


def test_unexpected_backend_error_is_wrapped_with_bundle(ctx: BuildContext, options: BuildOptions) -> None:
    backend = _ScriptedBackend(options=options, fetch_errors=[KeyError("config")])
    pipeline = BuildPipeline(options=options, selector=lambda definition, **_: backend)

    with pytest.raises(FatalError) as excinfo:
        pipeline.build(ctx, Definition.from_header(bootstrap="debootstrap"))

    error = excinfo.value
    assert isinstance(error.__cause__, KeyError)
    assert error.context["phase"] == "fetch"
    assert error.bundle is not None
    assert error.bundle.usable is False
    assert backend.state is BackendState.FAILED


def test_transient_failure_is_retried_with_a_fresh_build(ctx: BuildContext, options: BuildOptions) -> None:
    """A retry is a whole new build: new backend, new bundle, never the old ones."""
    errors: list[Exception] = [TransientError("mirror timed out")]
    backends: list[_ScriptedBackend] = []

    def selector(definition: Definition, **kwargs: object) -> _ScriptedBackend:
        backend = _ScriptedBackend(options=options, fetch_errors=errors)
        backends.append(backend)
        return backend

    pipeline = BuildPipeline(options=options, selector=selector)
    definition = Definition.from_header(bootstrap="debootstrap")

    with pytest.raises(TransientError) as excinfo:
        pipeline.build(ctx, definition)
    assert excinfo.value.retryable is True
    failed_bundle = excinfo.value.bundle
    assert failed_bundle is not None

    bundle = pipeline.build(ctx, definition)

    assert bundle.root != failed_bundle.root
    assert (bundle.rootfs_path / "bin" / "sh").exists()
    assert [backend.state for backend in backends] == [BackendState.FAILED, BackendState.PACKED]
    failed_bundle.remove()
    assert not failed_bundle.root.exists()


def test_concurrent_builds_get_distinct_bundles(ctx: BuildContext, options: BuildOptions) -> None:
    definition = Definition.from_header(bootstrap="scratch")

    first = build(ctx, definition, options=options)
    second = build(ctx, definition, options=options)

    assert first.root != second.root
    assert first.rootfs_path != second.rootfs_path


def test_build_writes_definition_metadata(ctx: BuildContext, options: BuildOptions) -> None:
    definition = Definition.from_header(
        {"bootstrap": "scratch"},
        (
            Section("labels", "Author someone\nVersion 1.0"),
            Section("environment", "export LC_ALL=C"),
            Section("runscript", "exec /app"),
        ),
    )

    bundle = build(ctx, definition, options=options)

    labels = json.loads((bundle.metadata_path / "labels.json").read_text(encoding="utf-8"))
    assert labels == {"Author": "someone", "Version": "1.0"}
    environment = bundle.metadata_path / "env" / "90-environment.sh"
    assert environment.read_text(encoding="utf-8") == "export LC_ALL=C\n"
    assert "exec /app" in (bundle.metadata_path / "runscript").read_text(encoding="utf-8")
    assert "Bootstrap: scratch" in (bundle.metadata_path / "definition").read_text(encoding="utf-8")


def test_pipeline_logs_dispatch_and_completion(ctx: BuildContext, options: BuildOptions) -> None:
    logger = StructuredLogger()

    build(ctx, Definition.from_header(bootstrap="scratch"), options=options, logger=logger)

    operations = [record["operation"] for record in logger.records]
    assert operations[0] == "dispatch"
    assert operations[-1] == "build_complete"
    assert "fetch_start" in operations
    assert "pack_complete" in operations
    log_path = logger.to_json_lines(options.tmp_dir / "build.jsonl" if options.tmp_dir else "build.jsonl")
    assert len(log_path.read_text(encoding="utf-8").splitlines()) == len(logger.records)
