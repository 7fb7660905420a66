"""OCI transport backend: copy with skopeo, then unpack the OCI layout."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from rootstock.backends.base import BackendKind, StagedBackend
from rootstock.bundle import Bundle
from rootstock.context import BuildContext
from rootstock.errors import ConfigError
from rootstock.extract import apply_layer
from rootstock.metadata import write_image_env
from rootstock.process import run_command

OCI_TRANSPORTS = frozenset({"docker", "docker-archive", "docker-daemon", "oci", "oci-archive"})
NETWORK_TRANSPORTS = frozenset({"docker"})

LAYOUT_DIR = "oci"
LAYOUT_TAG = "rootstock"
REF_NAME_ANNOTATION = "org.opencontainers.image.ref.name"
INDEX_MEDIA_TYPES = frozenset(
    {
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
    }
)


def is_oci_transport(value: str) -> bool:
    """Pure predicate: is *value* a transport name skopeo can read from."""
    return value in OCI_TRANSPORTS


def source_reference(transport: str, ref: str) -> str:
    if transport == "docker":
        return "docker://" + ref.removeprefix("docker://").lstrip("/")
    return f"{transport}:{ref.removeprefix(transport + ':')}"


@dataclass(slots=True)
class OCIBackend(StagedBackend):
    kind: ClassVar[BackendKind] = BackendKind.OCI

    transport: str = "docker"

    def requires_network(self) -> bool:
        return self.transport in NETWORK_TRANSPORTS

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        ref = bundle.definition.require("from", backend=self.kind.value)
        source = source_reference(self.transport, ref)
        layout = bundle.staging_path / LAYOUT_DIR
        self._log("oci_copy", "fetch", "Copying image to OCI layout.", extra={"source": source})
        run_command(
            ctx,
            [
                "skopeo",
                "copy",
                f"--override-arch={self.options.arch}",
                source,
                f"oci:{layout}:{LAYOUT_TAG}",
            ],
            backend=self.kind.value,
            operation="skopeo_copy",
            poll_interval=self.options.poll_interval,
        )
        bundle.staged["reference"] = source
        bundle.staged["layout"] = str(layout)

    def _pack(self, ctx: BuildContext, bundle: Bundle) -> None:
        layout = Path(bundle.staged["layout"])
        manifest_digest, manifest = resolve_manifest(layout, arch=self.options.arch)
        config_digest = descriptor_digest(manifest.get("config"), layout=layout, field="config")
        config = _read_blob_json(layout, config_digest)
        layers = [
            descriptor_digest(layer, layout=layout, field="layers")
            for layer in _descriptors(manifest, "layers", layout=layout)
        ]
        for digest in layers:
            ctx.check("apply_layer")
            apply_layer(ctx, blob_path(layout, digest), bundle.rootfs_path)
            self._log("oci_layer", "pack", "Applied image layer.", extra={"digest": digest})

        env = image_env(config)
        bundle.build_env.update(env)
        write_image_env(bundle, env)
        bundle.staged["manifest_digest"] = manifest_digest
        bundle.staged["layers"] = layers


def blob_path(layout: Path, digest: str) -> Path:
    algorithm, _, encoded = digest.partition(":")
    if not algorithm or not encoded or "/" in encoded:
        raise ConfigError("Invalid OCI blob digest.", context={"digest": digest})
    return layout / "blobs" / algorithm / encoded


def resolve_manifest(layout: Path, *, arch: str) -> tuple[str, dict[str, Any]]:
    index = _read_json(layout / "index.json")
    descriptors = _descriptors(index, "manifests", layout=layout)
    if not descriptors:
        raise ConfigError("OCI layout has no manifests.", context={"layout": str(layout)})
    chosen = next(
        (
            item
            for item in descriptors
            if item.get("annotations", {}).get(REF_NAME_ANNOTATION) == LAYOUT_TAG
        ),
        descriptors[0],
    )
    manifest = _read_blob_json(layout, descriptor_digest(chosen, layout=layout, field="manifests"))
    if chosen.get("mediaType") in INDEX_MEDIA_TYPES or "manifests" in manifest:
        platform_match = [
            item
            for item in _descriptors(manifest, "manifests", layout=layout)
            if item.get("platform", {}).get("architecture") == arch
        ]
        if not platform_match:
            raise ConfigError(
                "Image index has no manifest for the build architecture.",
                context={"layout": str(layout), "arch": arch},
            )
        chosen = platform_match[0]
        manifest = _read_blob_json(layout, descriptor_digest(chosen, layout=layout, field="manifests"))
    return descriptor_digest(chosen, layout=layout, field="manifests"), manifest


def descriptor_digest(descriptor: Any, *, layout: Path, field: str) -> str:
    digest = descriptor.get("digest") if isinstance(descriptor, dict) else None
    if not isinstance(digest, str) or not digest:
        raise _malformed(layout, field)
    return digest


def _descriptors(document: dict[str, Any], field: str, *, layout: Path) -> list[dict[str, Any]]:
    items = document.get(field, [])
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise _malformed(layout, field)
    return items


def _malformed(layout: Path, field: str) -> ConfigError:
    return ConfigError(
        "OCI manifest is malformed.",
        hint="Re-export the source image; a descriptor is missing or invalid.",
        context={"layout": str(layout), "field": field},
    )


def image_env(config: dict[str, Any]) -> dict[str, str]:
    env: dict[str, str] = {}
    for entry in (config.get("config") or {}).get("Env") or []:
        key, sep, value = entry.partition("=")
        if sep:
            env[key] = value
    return env


def _read_blob_json(layout: Path, digest: str) -> dict[str, Any]:
    return _read_json(blob_path(layout, digest))


def _read_json(path: Path) -> dict[str, Any]:
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError("OCI layout is missing a required file.", context={"path": str(path)}) from exc
    except json.JSONDecodeError as exc:
        raise ConfigError("OCI layout file is not valid JSON.", context={"path": str(path)}) from exc
    if not isinstance(parsed, dict):
        raise ConfigError("OCI layout file has invalid structure.", context={"path": str(path)})
    return parsed
