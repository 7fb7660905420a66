"""OS bootstrap backends that drive a host package manager into the rootfs.

The package manager populates the rootfs during fetch, so these backends are
not idempotent: a failed fetch may leave partially installed packages behind
in the bundle. Retrying means a new build with a new bundle.
"""

from __future__ import annotations

import os
import re
import shutil
import textwrap
from dataclasses import dataclass
from typing import ClassVar

from rootstock.backends.base import BackendKind, StagedBackend
from rootstock.bundle import Bundle
from rootstock.context import BuildContext
from rootstock.definition import Definition
from rootstock.errors import ConfigError, FatalError
from rootstock.process import run_command

DEBIAN_ARCH = {"amd64": "amd64", "arm64": "arm64", "ppc64le": "ppc64el", "s390x": "s390x"}
RPM_DEFAULT_PACKAGES = ("/etc/redhat-release", "coreutils")
OSVERSION_PLACEHOLDER = "%{OSVERSION}"


def include_packages(definition: Definition) -> tuple[str, ...]:
    return tuple(item for item in re.split(r"[\s,]+", definition.get("include")) if item)


@dataclass(slots=True)
class BootstrapBackend(StagedBackend):
    tool: ClassVar[str] = ""
    network: ClassVar[bool] = True

    def _pack(self, ctx: BuildContext, bundle: Bundle) -> None:
        ctx.check("pack")

    def _ensure_host_prerequisites(self, tool: str | None = None) -> str:
        tool = tool or self.tool
        path = shutil.which(tool)
        if path is None:
            raise FatalError(
                f"{self.kind.value} backend requires `{tool}` in PATH.",
                hint=f"Install {tool} on the build host.",
                context={"backend": self.kind.value, "operation": "prepare"},
            )
        if os.geteuid() != 0:
            raise FatalError(
                f"{self.kind.value} backend must run as root.",
                hint="Re-run the build with root privileges.",
                context={"backend": self.kind.value, "operation": "prepare"},
            )
        return path

    def _run(self, ctx: BuildContext, argv: list[str], operation: str) -> None:
        self._log(operation, "fetch", "Running bootstrap command.", extra={"argv": argv})
        run_command(
            ctx,
            argv,
            backend=self.kind.value,
            operation=operation,
            poll_interval=self.options.poll_interval,
        )


@dataclass(slots=True)
class DebootstrapBackend(BootstrapBackend):
    kind: ClassVar[BackendKind] = BackendKind.DEBOOTSTRAP
    tool: ClassVar[str] = "debootstrap"

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        definition = bundle.definition
        suite = definition.require("osversion", backend=self.kind.value)
        mirror = definition.require("mirrorurl", backend=self.kind.value)
        self._ensure_host_prerequisites()
        argv = ["debootstrap", "--variant=minbase"]
        packages = include_packages(definition)
        if packages:
            argv.append("--include=" + ",".join(packages))
        argv.extend([f"--arch={DEBIAN_ARCH[self.options.arch]}", suite, str(bundle.rootfs_path), mirror])
        self._run(ctx, argv, "debootstrap")
        bundle.staged["suite"] = suite
        bundle.staged["mirror"] = mirror


@dataclass(slots=True)
class ArchBackend(BootstrapBackend):
    kind: ClassVar[BackendKind] = BackendKind.ARCH
    tool: ClassVar[str] = "pacstrap"

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        self._ensure_host_prerequisites()
        packages = ("base", *include_packages(bundle.definition))
        self._run(ctx, ["pacstrap", "-c", "-d", "-G", "-M", str(bundle.rootfs_path), *packages], "pacstrap")
        bundle.staged["packages"] = list(packages)


@dataclass(slots=True)
class YumBackend(BootstrapBackend):
    """RPM bootstrap for both ``yum`` and ``dnf`` definitions."""

    kind: ClassVar[BackendKind] = BackendKind.YUM
    tool: ClassVar[str] = "dnf"
    fallback_tool: ClassVar[str] = "yum"

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        definition = bundle.definition
        mirror = resolve_mirror(definition, backend=self.kind.value)
        osversion = definition.get("osversion")
        manager = self.tool if shutil.which(self.tool) else self.fallback_tool
        self._ensure_host_prerequisites(manager)

        config = bundle.staging_path / "yum.conf"
        config.write_text(
            textwrap.dedent(f"""\
                [main]
                keepcache=0
                gpgcheck=0
                reposdir=/dev/null

                [base]
                name=rootstock-base
                baseurl={mirror}
                enabled=1
                gpgcheck=0
            """),
            encoding="utf-8",
        )
        argv = [
            manager,
            "--noplugins",
            "-c",
            str(config),
            f"--installroot={bundle.rootfs_path}",
        ]
        if osversion:
            argv.append(f"--releasever={osversion}")
        argv.extend(["-y", "install", *RPM_DEFAULT_PACKAGES, *include_packages(definition)])
        self._run(ctx, argv, "rpm_install")
        bundle.staged["mirror"] = mirror


@dataclass(slots=True)
class ZypperBackend(BootstrapBackend):
    kind: ClassVar[BackendKind] = BackendKind.ZYPPER
    tool: ClassVar[str] = "zypper"

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        definition = bundle.definition
        mirror = resolve_mirror(definition, backend=self.kind.value)
        self._ensure_host_prerequisites()
        root = str(bundle.rootfs_path)
        self._run(ctx, ["zypper", "--non-interactive", "--root", root, "addrepo", mirror, "repo-oss"], "zypper_addrepo")
        self._run(
            ctx,
            [
                "zypper",
                "--non-interactive",
                "--root",
                root,
                "--gpg-auto-import-keys",
                "install",
                "--auto-agree-with-licenses",
                "zypper",
                *include_packages(definition),
            ],
            "zypper_install",
        )
        bundle.staged["mirror"] = mirror


def resolve_mirror(definition: Definition, *, backend: str) -> str:
    mirror = definition.require("mirrorurl", backend=backend)
    if OSVERSION_PLACEHOLDER not in mirror:
        return mirror
    osversion = definition.get("osversion")
    if not osversion:
        raise ConfigError(
            f"`MirrorURL` references {OSVERSION_PLACEHOLDER} but `OSVersion` is not set.",
            hint="Add `OSVersion:` to the definition header.",
            context={"key": "osversion", "backend": backend, "mirrorurl": mirror},
        )
    return mirror.replace(OSVERSION_PLACEHOLDER, osversion)
