"""Bundle metadata layout written at the end of the pack phase."""

from __future__ import annotations

import json
import shlex
from pathlib import Path

from rootstock.bundle import Bundle

ENV_DIR = "env"
BASE_ENV_FILE = "01-base.sh"
IMAGE_ENV_FILE = "10-docker2singularity.sh"
DEFINITION_ENV_FILE = "90-environment.sh"

BASE_ENV = """\
#!/bin/sh
if test -z "$PATH"; then
    PATH="/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"
    export PATH
fi
"""

DEFAULT_RUNSCRIPT = """\
#!/bin/sh
exec /bin/sh "$@"
"""


def parse_labels(body: str) -> dict[str, str]:
    """Parse ``KEY VALUE`` lines from a %labels section."""
    labels: dict[str, str] = {}
    for raw_line in body.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition(" ")
        labels[key] = value.strip()
    return labels


def write_image_env(bundle: Bundle, env: dict[str, str]) -> Path | None:
    if not env:
        return None
    lines = ["#!/bin/sh"]
    lines.extend(f"export {key}={shlex.quote(value)}" for key, value in sorted(env.items()))
    return _write(bundle.metadata_path / ENV_DIR / IMAGE_ENV_FILE, "\n".join(lines) + "\n", 0o755)


def write_metadata(bundle: Bundle) -> tuple[Path, ...]:
    """Populate ``bundle.metadata_path`` from the definition and build state."""
    definition = bundle.definition
    written: list[Path] = [
        _write(bundle.metadata_path / "definition", definition.render(), 0o644),
        _write(bundle.metadata_path / ENV_DIR / BASE_ENV_FILE, BASE_ENV, 0o755),
    ]

    labels: dict[str, str] = {}
    for section in definition.sections_named("labels"):
        labels.update(parse_labels(section.body))
    written.append(
        _write(
            bundle.metadata_path / "labels.json",
            json.dumps(labels, indent=2, sort_keys=True) + "\n",
            0o644,
        )
    )

    environment = definition.section("environment")
    if environment is not None:
        written.append(
            _write(
                bundle.metadata_path / ENV_DIR / DEFINITION_ENV_FILE,
                environment.body.rstrip("\n") + "\n",
                0o755,
            )
        )

    runscript = definition.section("runscript")
    runscript_body = DEFAULT_RUNSCRIPT
    if runscript is not None:
        runscript_body = "#!/bin/sh\n\n" + runscript.body.rstrip("\n") + "\n"
    written.append(_write(bundle.metadata_path / "runscript", runscript_body, 0o755))

    test = definition.section("test")
    if test is not None:
        written.append(
            _write(bundle.metadata_path / "test", "#!/bin/sh\n\n" + test.body.rstrip("\n") + "\n", 0o755)
        )

    written.append(bundle.write_provenance())
    return tuple(written)


def _write(path: Path, content: str, mode: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    path.chmod(mode)
    return path


__all__ = ["parse_labels", "write_image_env", "write_metadata"]
