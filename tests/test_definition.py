import pytest

from rootstock.definition import Definition, Section
from rootstock.errors import ConfigError


def test_header_keys_are_lowercased() -> None:
    definition = Definition(header={"Bootstrap": "docker", "From": "alpine:3.19"})

    assert definition.header == {"bootstrap": "docker", "from": "alpine:3.19"}
    assert definition.get("FROM") == "alpine:3.19"


def test_header_is_read_only() -> None:
    definition = Definition.from_header(bootstrap="scratch")

    with pytest.raises(TypeError):
        definition.header["bootstrap"] = "docker"  # type: ignore[index]


def test_require_names_the_missing_key() -> None:
    definition = Definition.from_header(bootstrap="debootstrap", mirrorurl="   ")

    with pytest.raises(ConfigError) as excinfo:
        definition.require("mirrorurl", backend="debootstrap")

    assert excinfo.value.context["key"] == "mirrorurl"
    assert "mirrorurl" in str(excinfo.value)


def test_section_lookup_preserves_order() -> None:
    definition = Definition.from_header(
        {"bootstrap": "scratch"},
        (
            Section("labels", "A 1"),
            Section("post", "echo hi"),
            Section("labels", "B 2"),
        ),
    )

    assert definition.section("post") == Section("post", "echo hi")
    assert definition.section("runscript") is None
    assert [section.body for section in definition.sections_named("labels")] == ["A 1", "B 2"]


def test_render_emits_header_then_sections() -> None:
    definition = Definition.from_header(
        {"bootstrap": "docker", "from": "alpine"},
        (Section("post", "apk add curl\n"), Section("files", "a b", args="from stage1")),
    )

    assert definition.render() == (
        "Bootstrap: docker\n"
        "From: alpine\n"
        "\n"
        "%post\n"
        "apk add curl\n"
        "\n"
        "%files from stage1\n"
        "a b\n"
    )
