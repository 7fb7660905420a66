"""Parsed build definition: header key/values plus ordered raw sections."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from rootstock.errors import ConfigError


@dataclass(frozen=True, slots=True)
class Section:
    name: str
    body: str = ""
    args: str = ""


@dataclass(frozen=True, slots=True)
class Definition:
    """Read-only build manifest handed over by the definition parser."""

    header: Mapping[str, str] = field(default_factory=dict)
    sections: tuple[Section, ...] = ()

    def __post_init__(self) -> None:
        normalized = {str(key).strip().lower(): str(value) for key, value in self.header.items()}
        object.__setattr__(self, "header", MappingProxyType(normalized))
        object.__setattr__(self, "sections", tuple(self.sections))

    @classmethod
    def from_header(
        cls,
        header: Mapping[str, str] | None = None,
        sections: Iterable[Section] = (),
        /,
        **values: str,
    ) -> Definition:
        merged = {**dict(header or {}), **values}
        return cls(header=merged, sections=tuple(sections))

    def get(self, key: str, default: str = "") -> str:
        return self.header.get(key.lower(), default).strip()

    def require(self, key: str, *, backend: str) -> str:
        value = self.get(key)
        if not value:
            raise ConfigError(
                f"Definition header is missing required key `{key}`.",
                hint=f"Add `{key.capitalize()}:` to the definition header.",
                context={"key": key, "backend": backend},
            )
        return value

    def section(self, name: str) -> Section | None:
        for section in self.sections:
            if section.name == name:
                return section
        return None

    def sections_named(self, name: str) -> tuple[Section, ...]:
        return tuple(section for section in self.sections if section.name == name)

    def render(self) -> str:
        """Render back to definition-file text for bundle provenance."""
        lines = [f"{key.capitalize()}: {value}" for key, value in self.header.items()]
        for section in self.sections:
            heading = f"%{section.name}"
            if section.args:
                heading = f"{heading} {section.args}"
            lines.extend(["", heading])
            if section.body:
                lines.append(section.body.rstrip("\n"))
        return "\n".join(lines) + "\n"


__all__ = ["Definition", "Section"]
