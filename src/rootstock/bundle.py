"""Mutable build workspace shared by a backend's fetch and pack phases."""

from __future__ import annotations

import json
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import cbor2

from rootstock.definition import Definition
from rootstock.errors import BackendStateError, FatalError
from rootstock.options import BuildOptions

ROOTFS_DIR = "rootfs"
METADATA_DIR = "metadata"
STAGING_DIR = "staging"
PROVENANCE_FILE = "provenance.json"


@dataclass(slots=True)
class Bundle:
    definition: Definition
    root: Path
    rootfs_path: Path
    metadata_path: Path
    staging_path: Path
    build_env: dict[str, str] = field(default_factory=dict)
    staged: dict[str, Any] = field(default_factory=dict)
    backend: str | None = None
    usable: bool = True
    failure: str | None = None
    schema_version: int = 1
    _owner: object | None = field(default=None, init=False, repr=False, compare=False)

    @classmethod
    def create(cls, definition: Definition, *, options: BuildOptions | None = None) -> Bundle:
        """Allocate a fresh bundle directory with empty rootfs/metadata/staging."""
        options = options or BuildOptions()
        try:
            if options.tmp_dir is not None:
                Path(options.tmp_dir).mkdir(parents=True, exist_ok=True)
            root = Path(
                tempfile.mkdtemp(
                    prefix="rootstock-bundle-",
                    dir=str(options.tmp_dir) if options.tmp_dir is not None else None,
                )
            )
            bundle = cls(
                definition=definition,
                root=root,
                rootfs_path=root / ROOTFS_DIR,
                metadata_path=root / METADATA_DIR,
                staging_path=root / STAGING_DIR,
            )
            for path in (bundle.rootfs_path, bundle.metadata_path, bundle.staging_path):
                path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FatalError(
                "Unable to allocate bundle directories.",
                hint="Check free space and permissions of the temporary directory.",
                context={"operation": "bundle_create", "tmp_dir": str(options.tmp_dir or "")},
            ) from exc
        return bundle

    def bind(self, owner: object, *, kind: str) -> None:
        """Give *owner* exclusive write access; *kind* is recorded for provenance."""
        if self._owner is not None and self._owner is not owner:
            raise BackendStateError(
                "Bundle is already owned by another backend.",
                context={"owner": self.backend or "", "backend": kind},
            )
        self._owner = owner
        self.backend = kind

    def mark_unusable(self, reason: str) -> None:
        self.usable = False
        self.failure = reason

    def provenance(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "backend": self.backend,
            "header": dict(sorted(self.definition.header.items())),
            "sections": [section.name for section in self.definition.sections],
            "build_env": dict(sorted(self.build_env.items())),
            "staged": {key: _plain(value) for key, value in sorted(self.staged.items())},
            "usable": self.usable,
            "failure": self.failure,
        }

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self.provenance(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self.provenance(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def write_provenance(self) -> Path:
        self.metadata_path.mkdir(parents=True, exist_ok=True)
        path = self.metadata_path / PROVENANCE_FILE
        self.to_json(path)
        return path

    def remove(self) -> None:
        """Delete the bundle directory. Cleanup is always the caller's call."""
        shutil.rmtree(self.root, ignore_errors=True)


def _plain(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in sorted(value.items())}
    if isinstance(value, list | tuple):
        return [_plain(item) for item in value]
    return value


__all__ = ["Bundle"]
