"""Registry backends that pull a single image file: library, shub, oras."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar
from urllib.parse import quote

from rootstock import sif
from rootstock.backends.base import BackendKind, StagedBackend
from rootstock.bundle import Bundle
from rootstock.context import BuildContext
from rootstock.errors import ConfigError, TransientError
from rootstock.extract import materialize_image
from rootstock.fetch.http import download, fetch_json
from rootstock.process import run_command

IMAGE_FILE = "image"
DEFAULT_TAG = "latest"


def split_tag(ref: str) -> tuple[str, str]:
    name, sep, tag = ref.rpartition(":")
    if not sep or "/" in tag:
        return ref, DEFAULT_TAG
    return name, tag or DEFAULT_TAG


def library_path(ref: str) -> str:
    """Expand a library reference to ``entity/collection/container:tag``."""
    name, tag = split_tag(ref.removeprefix("library://").strip("/"))
    parts = [part for part in name.split("/") if part]
    if len(parts) == 1:
        parts = ["library", "default", parts[0]]
    elif len(parts) == 2:
        parts = [parts[0], "default", parts[1]]
    elif len(parts) != 3:
        raise ConfigError(
            f"Invalid library reference `{ref}`.",
            hint="Use `entity/collection/container[:tag]`.",
            context={"key": "from", "value": ref},
        )
    return "/".join(parts) + f":{tag}"


@dataclass(slots=True)
class ImageFileBackend(StagedBackend):
    """Fetch downloads one image file into staging; pack unpacks it."""

    network: ClassVar[bool] = True

    def _pack(self, ctx: BuildContext, bundle: Bundle) -> None:
        image = Path(bundle.staged["image"])
        image_format = materialize_image(
            ctx,
            image,
            bundle.rootfs_path,
            backend=self.kind.value,
            poll_interval=self.options.poll_interval,
        )
        bundle.staged["format"] = image_format


@dataclass(slots=True)
class LibraryBackend(ImageFileBackend):
    kind: ClassVar[BackendKind] = BackendKind.LIBRARY

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        definition = bundle.definition
        ref = library_path(definition.require("from", backend=self.kind.value))
        base_url = (definition.get("libraryurl") or self.options.library_url).rstrip("/")
        url = f"{base_url}/v1/imagefile/{quote(ref, safe='/:')}?arch={self.options.arch}"
        self._log("library_download", "fetch", "Downloading library image.", extra={"url": url})
        image = download(ctx, url, dest=bundle.staging_path / IMAGE_FILE, backend=self.kind.value)
        bundle.staged["reference"] = f"library://{ref}"
        bundle.staged["image"] = str(image)


@dataclass(slots=True)
class ShubBackend(ImageFileBackend):
    kind: ClassVar[BackendKind] = BackendKind.SHUB

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        raw = bundle.definition.require("from", backend=self.kind.value)
        name, tag = split_tag(raw.removeprefix("shub://").strip("/"))
        if name.count("/") != 1:
            raise ConfigError(
                f"Invalid shub reference `{raw}`.",
                hint="Use `user/container[:tag]`.",
                context={"key": "from", "value": raw},
            )
        api_url = f"{self.options.shub_url.rstrip('/')}/api/container/{name}:{tag}"
        manifest = fetch_json(ctx, api_url, backend=self.kind.value)
        image_url = manifest.get("image")
        if not isinstance(image_url, str) or not image_url:
            raise TransientError(
                "Singularity Hub manifest has no image URL.",
                context={"backend": self.kind.value, "url": api_url},
            )
        self._log("shub_download", "fetch", "Downloading hub image.", extra={"url": image_url})
        image = download(ctx, image_url, dest=bundle.staging_path / IMAGE_FILE, backend=self.kind.value)
        bundle.staged["reference"] = f"shub://{name}:{tag}"
        bundle.staged["image"] = str(image)


@dataclass(slots=True)
class OrasBackend(ImageFileBackend):
    kind: ClassVar[BackendKind] = BackendKind.ORAS

    def _fetch(self, ctx: BuildContext, bundle: Bundle) -> None:
        raw = bundle.definition.require("from", backend=self.kind.value)
        ref = raw.removeprefix("oras://").strip("/")
        output = bundle.staging_path / "oras"
        output.mkdir(parents=True, exist_ok=True)
        run_command(
            ctx,
            ["oras", "pull", ref, "-o", str(output)],
            backend=self.kind.value,
            operation="oras_pull",
            poll_interval=self.options.poll_interval,
        )
        bundle.staged["reference"] = f"oras://{ref}"
        bundle.staged["image"] = str(pulled_image(output, ref=ref))


def pulled_image(directory: Path, *, ref: str) -> Path:
    files = sorted(path for path in directory.rglob("*") if path.is_file())
    images = [path for path in files if sif.is_sif(path)] or files
    if len(images) == 1:
        return images[0]
    if not images:
        raise TransientError(
            "oras pull produced no image file.",
            context={"backend": BackendKind.ORAS.value, "reference": ref},
        )
    raise ConfigError(
        "oras artifact contains more than one candidate image file.",
        hint="Reference an artifact that holds a single SIF image.",
        context={"reference": ref, "files": ", ".join(path.name for path in images)},
    )
