"""Local image import: sandbox directory, tar archive, squashfs, or SIF file."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from rootstock.backends.base import BackendKind, StagedBackend
from rootstock.bundle import Bundle
from rootstock.context import BuildContext
from rootstock.errors import ConfigError
from rootstock.extract import materialize_image


@dataclass(slots=True)
class LocalImageBackend(StagedBackend):
    kind: ClassVar[BackendKind] = BackendKind.LOCALIMAGE

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        raw_source = bundle.definition.require("from", backend=self.kind.value)
        source = Path(raw_source).expanduser()
        if not source.exists():
            raise ConfigError(
                f"Local image `{raw_source}` does not exist.",
                hint="Point `From:` at an existing image file or sandbox directory.",
                context={"key": "from", "value": raw_source},
            )
        image_format = materialize_image(
            ctx,
            source,
            bundle.rootfs_path,
            backend=self.kind.value,
            poll_interval=self.options.poll_interval,
        )
        bundle.staged["source"] = str(source.resolve())
        bundle.staged["format"] = image_format
        self._log(
            "local_import",
            "fetch",
            "Imported local image.",
            extra={"source": str(source), "format": image_format},
        )

    def _pack(self, ctx: BuildContext, bundle: Bundle) -> None:
        ctx.check("pack")
