"""Root filesystem materialization from directories, archives, and image files."""

from __future__ import annotations

import os
import shutil
import tarfile
from pathlib import Path, PurePosixPath
from typing import Literal

from rootstock import sif
from rootstock.context import BuildContext
from rootstock.errors import ConfigError
from rootstock.process import run_command

ImageFormat = Literal["sandbox", "tar", "squashfs", "sif"]

WHITEOUT_PREFIX = ".wh."
OPAQUE_WHITEOUT = ".wh..wh..opq"
SQUASHFS_MAGIC = b"hsqs"
CHECK_EVERY = 64

BASE_DIRS = ("bin", "dev", "etc", "home", "proc", "root", "sys", "tmp", "var/tmp")
BASE_FILES = ("etc/hosts", "etc/resolv.conf")


def detect_format(path: Path) -> ImageFormat:
    if path.is_dir():
        return "sandbox"
    if sif.is_sif(path):
        return "sif"
    with path.open("rb") as handle:
        if handle.read(4) == SQUASHFS_MAGIC:
            return "squashfs"
    if tarfile.is_tarfile(path):
        return "tar"
    raise ConfigError(
        "Unsupported image format.",
        hint="Use a sandbox directory, tar archive, squashfs, or SIF image.",
        context={"path": str(path)},
    )


def materialize_image(
    ctx: BuildContext,
    source: Path,
    rootfs: Path,
    *,
    backend: str,
    poll_interval: float = 0.1,
) -> ImageFormat:
    """Populate *rootfs* from *source*, returning the detected format."""
    image_format = detect_format(source)
    rootfs.mkdir(parents=True, exist_ok=True)
    if image_format == "sandbox":
        copy_tree(ctx, source, rootfs)
    elif image_format == "tar":
        apply_layer(ctx, source, rootfs)
    elif image_format == "squashfs":
        unsquash(ctx, source, rootfs, backend=backend, poll_interval=poll_interval)
    else:
        partition = sif.root_partition(source)
        unsquash(
            ctx,
            source,
            rootfs,
            backend=backend,
            offset=partition.offset,
            poll_interval=poll_interval,
        )
    return image_format


def copy_tree(ctx: BuildContext, source: Path, rootfs: Path) -> None:
    ctx.check("copy_tree")
    shutil.copytree(source, rootfs, symlinks=True, dirs_exist_ok=True)


def unsquash(
    ctx: BuildContext,
    image: Path,
    rootfs: Path,
    *,
    backend: str,
    offset: int = 0,
    poll_interval: float = 0.1,
) -> None:
    argv = ["unsquashfs", "-f", "-d", str(rootfs)]
    if offset:
        argv.extend(["-o", str(offset)])
    argv.append(str(image))
    run_command(ctx, argv, backend=backend, operation="unsquashfs", poll_interval=poll_interval)


def apply_layer(ctx: BuildContext, archive: Path, rootfs: Path) -> int:
    """Extract one image layer on top of *rootfs*, honouring OCI whiteouts."""
    try:
        return _apply_layer(ctx, archive, rootfs)
    except tarfile.TarError as exc:
        raise ConfigError(
            "Image layer archive is corrupt or unsafe.",
            hint="Rebuild the source image; archive members must stay inside the root.",
            context={"archive": str(archive), "cause": str(exc)},
        ) from exc


def _apply_layer(ctx: BuildContext, archive: Path, rootfs: Path) -> int:
    applied = 0
    root = rootfs.resolve()
    with tarfile.open(archive, mode="r:*") as tar:
        for index, member in enumerate(tar):
            if index % CHECK_EVERY == 0:
                ctx.check("apply_layer")
            relative = PurePosixPath(member.name.lstrip("/"))
            parent = _contained_parent(root, relative, archive=archive)
            name = relative.name
            if name == OPAQUE_WHITEOUT:
                _clear_directory(parent)
                continue
            if name.startswith(WHITEOUT_PREFIX):
                _remove(parent / name[len(WHITEOUT_PREFIX) :])
                continue
            target = parent / name if name else root
            if target.is_symlink() or (target.exists() and not target.is_dir()):
                target.unlink()
            elif target.is_dir() and not member.isdir():
                shutil.rmtree(target)
            tar.extract(member, path=rootfs, filter="tar")
            applied += 1
    return applied


def insert_base_files(rootfs: Path) -> None:
    for directory in BASE_DIRS:
        (rootfs / directory).mkdir(parents=True, exist_ok=True)
    (rootfs / "tmp").chmod(0o1777)
    (rootfs / "var" / "tmp").chmod(0o1777)
    for file_name in BASE_FILES:
        path = rootfs / file_name
        if not path.exists() and not path.is_symlink():
            path.touch(mode=0o644)


def _contained_parent(root: Path, relative: PurePosixPath, *, archive: Path) -> Path:
    """Resolve the member's parent directory, following symlinks already in the rootfs."""
    parent = Path(os.path.realpath(root.joinpath(*relative.parent.parts)))
    if ".." in relative.parts or (parent != root and root not in parent.parents):
        raise ConfigError(
            "Image layer archive is corrupt or unsafe.",
            hint="Rebuild the source image; archive members must stay inside the root.",
            context={"archive": str(archive), "member": str(relative)},
        )
    return parent


def _clear_directory(directory: Path) -> None:
    if not directory.is_dir():
        return
    for child in directory.iterdir():
        _remove(child)


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


__all__ = [
    "ImageFormat",
    "apply_layer",
    "copy_tree",
    "detect_format",
    "insert_base_files",
    "materialize_image",
    "unsquash",
]
