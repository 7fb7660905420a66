"""Minimal base image from a single static busybox binary."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from rootstock.backends.base import BackendKind, StagedBackend
from rootstock.bundle import Bundle
from rootstock.context import BuildContext
from rootstock.errors import ConfigError
from rootstock.fetch.http import download

BUSYBOX_APPLETS = ("sh", "ls", "cat", "cp", "mv", "rm", "mkdir", "echo", "env", "grep")

PASSWD = "root:x:0:0:root:/root:/bin/sh\n"
GROUP = "root:x:0:\n"


@dataclass(slots=True)
class BusyBoxBackend(StagedBackend):
    kind: ClassVar[BackendKind] = BackendKind.BUSYBOX
    network: ClassVar[bool] = True

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        definition = bundle.definition
        mirror = definition.require("mirrorurl", backend=self.kind.value)
        checksum = definition.get("checksum")
        if self.options.require_integrity and not checksum:
            raise ConfigError(
                "A busybox checksum is required by build options.",
                hint="Add `Checksum: <sha256>` to the definition header.",
                context={"key": "checksum", "backend": self.kind.value},
            )
        binary = download(
            ctx,
            mirror,
            dest=bundle.staging_path / "busybox",
            backend=self.kind.value,
            sha256=checksum,
        )
        bundle.staged["busybox"] = str(binary)
        self._log("busybox_download", "fetch", "Downloaded busybox.", extra={"url": mirror})

    def _pack(self, ctx: BuildContext, bundle: Bundle) -> None:
        rootfs = bundle.rootfs_path
        bin_dir = rootfs / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        target = bin_dir / "busybox"
        shutil.copyfile(Path(bundle.staged["busybox"]), target)
        target.chmod(0o755)
        for applet in BUSYBOX_APPLETS:
            link = bin_dir / applet
            if not link.exists() and not link.is_symlink():
                link.symlink_to("busybox")
        etc = rootfs / "etc"
        etc.mkdir(parents=True, exist_ok=True)
        (etc / "passwd").write_text(PASSWD, encoding="utf-8")
        (etc / "group").write_text(GROUP, encoding="utf-8")
