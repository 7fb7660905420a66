import json
from pathlib import Path

import cbor2
import pytest

from rootstock.bundle import Bundle
from rootstock.definition import Definition, Section
from rootstock.errors import BackendStateError, FatalError
from rootstock.metadata import parse_labels, write_image_env
from rootstock.options import BuildOptions


def test_create_allocates_distinct_workspaces(options: BuildOptions) -> None:
    definition = Definition.from_header(bootstrap="scratch")

    first = Bundle.create(definition, options=options)
    second = Bundle.create(definition, options=options)

    assert first.root != second.root
    for bundle in (first, second):
        assert bundle.root.parent == options.tmp_dir
        assert bundle.rootfs_path.is_dir()
        assert bundle.metadata_path.is_dir()
        assert bundle.staging_path.is_dir()
        assert bundle.usable is True


def test_create_reports_unwritable_tmp_dir_as_fatal(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")

    with pytest.raises(FatalError):
        Bundle.create(Definition.from_header(bootstrap="scratch"), options=BuildOptions(tmp_dir=blocker))


def test_bind_rejects_second_owner(options: BuildOptions) -> None:
    bundle = Bundle.create(Definition.from_header(bootstrap="scratch"), options=options)
    owner, other = object(), object()
    bundle.bind(owner, kind="scratch")
    bundle.bind(owner, kind="scratch")

    with pytest.raises(BackendStateError):
        bundle.bind(other, kind="scratch")
    assert bundle.backend == "scratch"


def test_provenance_exports_are_stable(options: BuildOptions) -> None:
    bundle = Bundle.create(
        Definition.from_header({"bootstrap": "docker", "from": "alpine"}, (Section("post", "true"),)),
        options=options,
    )
    bundle.bind(object(), kind="oci")
    bundle.build_env["PATH"] = "/usr/bin"
    bundle.staged["layers"] = ("sha256:aa", "sha256:bb")
    bundle.staged["layout"] = bundle.staging_path

    assert bundle.to_json() == bundle.to_json()
    assert bundle.to_cbor() == bundle.to_cbor()
    decoded = cbor2.loads(bundle.to_cbor())
    assert decoded["backend"] == "oci"
    assert decoded["staged"]["layers"] == ["sha256:aa", "sha256:bb"]
    assert decoded["staged"]["layout"] == str(bundle.staging_path)
    assert decoded["sections"] == ["post"]

    cbor_path = options.tmp_dir / "bundle.cbor" if options.tmp_dir else Path("bundle.cbor")
    bundle.to_cbor(cbor_path)
    assert cbor_path.read_bytes() == bundle.to_cbor()


def test_mark_unusable_is_recorded_in_provenance(options: BuildOptions) -> None:
    bundle = Bundle.create(Definition.from_header(bootstrap="scratch"), options=options)
    bundle.mark_unusable("fetch failed: mirror down")

    path = bundle.write_provenance()

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["usable"] is False
    assert payload["failure"] == "fetch failed: mirror down"


def test_remove_deletes_the_workspace(options: BuildOptions) -> None:
    bundle = Bundle.create(Definition.from_header(bootstrap="scratch"), options=options)
    (bundle.rootfs_path / "file").write_text("x", encoding="utf-8")

    bundle.remove()

    assert not bundle.root.exists()


def test_parse_labels_skips_comments_and_blank_lines() -> None:
    body = "\n# comment\nMaintainer someone@example.com\nVersion   2\nFlag\n"

    assert parse_labels(body) == {"Maintainer": "someone@example.com", "Version": "2", "Flag": ""}


def test_image_env_is_shell_quoted(options: BuildOptions) -> None:
    bundle = Bundle.create(Definition.from_header(bootstrap="docker"), options=options)

    path = write_image_env(bundle, {"GREETING": "hello world", "PATH": "/bin"})

    assert path is not None
    assert path.read_text(encoding="utf-8") == (
        "#!/bin/sh\nexport GREETING='hello world'\nexport PATH=/bin\n"
    )
    assert write_image_env(bundle, {}) is None
