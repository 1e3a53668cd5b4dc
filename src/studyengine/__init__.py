"""studyengine package."""

from __future__ import annotations

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

__all__ = ["__version__"]


def _source_checkout_version() -> str | None:
    """Read ``[project].version`` when running from a source checkout."""
    pyproject = Path(__file__).resolve().parents[2] / "pyproject.toml"
    if not pyproject.is_file():
        return None
    with pyproject.open("rb") as handle:
        data = tomllib.load(handle)
    project = data.get("project", {})
    if project.get("name") != "studyengine":
        return None
    return project.get("version")


__version__ = _source_checkout_version()
if __version__ is None:
    try:
        __version__ = version("studyengine")
    except PackageNotFoundError:
        __version__ = "0+unknown"
