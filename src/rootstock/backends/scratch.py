"""Empty root filesystem backend."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from rootstock.backends.base import BackendKind, StagedBackend
from rootstock.bundle import Bundle
from rootstock.context import BuildContext


@dataclass(slots=True)
class ScratchBackend(StagedBackend):
    """Leaves the rootfs empty; only metadata is written."""

    kind: ClassVar[BackendKind] = BackendKind.SCRATCH
    base_files: ClassVar[bool] = False

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        bundle.rootfs_path.mkdir(parents=True, exist_ok=True)

    def _pack(self, ctx: BuildContext, bundle: Bundle) -> None:
        pass
