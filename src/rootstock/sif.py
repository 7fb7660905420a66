"""Minimal SIF container reader: locate the primary root-filesystem partition."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path

from rootstock.errors import ConfigError

SIF_MAGIC = b"SIF_MAGIC"
HEADER_FORMAT = "<32s10s3s3s16sqqqqqqqq"
DESCRIPTOR_FORMAT = "<i?IIIqqqqqqq128s384s"
PARTITION_EXTRA_FORMAT = "<ii3s"

HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
DESCRIPTOR_SIZE = struct.calcsize(DESCRIPTOR_FORMAT)

DATA_PARTITION = 0x4004
FS_SQUASHFS = 1
PART_PRIMARY_SYSTEM = 2


@dataclass(frozen=True, slots=True)
class Partition:
    offset: int
    size: int
    fstype: int
    parttype: int


def is_sif(path: Path) -> bool:
    try:
        with path.open("rb") as handle:
            head = handle.read(32 + len(SIF_MAGIC))
    except OSError:
        return False
    return head[32:] == SIF_MAGIC


def read_partitions(path: Path) -> tuple[Partition, ...]:
    with path.open("rb") as handle:
        raw_header = handle.read(HEADER_SIZE)
        if len(raw_header) < HEADER_SIZE:
            raise _corrupt(path, "truncated header")
        fields = struct.unpack(HEADER_FORMAT, raw_header)
        if not fields[1].startswith(SIF_MAGIC):
            raise _corrupt(path, "bad magic")
        descriptors_total, descriptors_offset = fields[8], fields[9]

        partitions: list[Partition] = []
        handle.seek(descriptors_offset)
        for _ in range(descriptors_total):
            raw = handle.read(DESCRIPTOR_SIZE)
            if len(raw) < DESCRIPTOR_SIZE:
                raise _corrupt(path, "truncated descriptor table")
            datatype, used, _id, _group, _link, offset, size, *_rest, extra = struct.unpack(
                DESCRIPTOR_FORMAT, raw
            )
            if not used or datatype != DATA_PARTITION:
                continue
            fstype, parttype, _arch = struct.unpack_from(PARTITION_EXTRA_FORMAT, extra)
            partitions.append(Partition(offset=offset, size=size, fstype=fstype, parttype=parttype))
    return tuple(partitions)


def root_partition(path: Path) -> Partition:
    squashfs = [part for part in read_partitions(path) if part.fstype == FS_SQUASHFS]
    for part in squashfs:
        if part.parttype == PART_PRIMARY_SYSTEM:
            return part
    if squashfs:
        return squashfs[0]
    raise ConfigError(
        "SIF image has no squashfs root filesystem partition.",
        hint="Only squashfs-based SIF images can be used as a build source.",
        context={"path": str(path)},
    )


def _corrupt(path: Path, detail: str) -> ConfigError:
    return ConfigError(
        "SIF image is corrupt or unsupported.",
        context={"path": str(path), "detail": detail},
    )


__all__ = ["Partition", "is_sif", "read_partitions", "root_partition"]
