"""Project manifests: the validated root requirements handed to the pipeline."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import requirements

from constants import Constants
from errors import ConfigError, InvalidRequirement
from environment.layout import major_minor
from versioning.models import Requirement
from versioning.parser import parse_requirement

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)


def current_python_version() -> str:
    return f"{sys.version_info.major}.{sys.version_info.minor}"


@dataclass(frozen=True)
class Manifest:
    """Root requirements plus the interpreter version they target."""
    requirements: Tuple[Requirement, ...]
    python_version: str
    name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "requirements", tuple(self.requirements))
        object.__setattr__(self, "python_version", major_minor(self.python_version))

    @classmethod
    def from_strings(cls, lines: Iterable[str], python_version: Optional[str] = None, name: Optional[str] = None) -> "Manifest":
        return cls(
            requirements=tuple(parse_requirement(line) for line in lines),
            python_version=python_version or current_python_version(),
            name=name,
        )

    @property
    def names(self) -> List[str]:
        return sorted({r.name for r in self.requirements})


def _table_requirement(name: str, spec: Any) -> Requirement:
    """One entry of ``[tool.pypackage.dependencies]``: a string or an inline table."""
    if isinstance(spec, str):
        spec = {"version": spec}
    if not isinstance(spec, dict):
        raise InvalidRequirement(f"Unsupported dependency value for {name}: {spec!r}")
    head = name
    if spec.get("extras"):
        head += "[" + ",".join(spec["extras"]) + "]"
    version = str(spec.get("version") or "*").strip()
    if spec.get("url"):
        text = f"{head} @ {spec['url']}"
    elif version == "*":
        text = head
    else:
        text = f'{head} = "{version}"'
    if spec.get("markers"):
        text += f" ; {spec['markers']}"
    return parse_requirement(text)


def load_pyproject(path: Union[str, Path], python_version: Optional[str] = None) -> Manifest:
    """Read ``[tool.pypackage]`` from a ``pyproject.toml``.

    ``dependencies`` there is a table of ``name = "constraint"`` (or inline
    tables with ``version``, ``extras``, ``url`` and ``markers``). Without it
    the PEP 621 ``[project].dependencies`` list is used. ``py_version`` in the
    tool table wins over the ``python_version`` argument.
    """
    path = Path(path)
    try:
        with open(path, "rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Manifest not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    tool: Dict[str, Any] = document.get("tool", {}).get(Constants.TOOL_SECTION, {}) or {}
    project: Dict[str, Any] = document.get("project", {}) or {}

    reqs: List[Requirement] = []
    table = tool.get("dependencies")
    if isinstance(table, dict):
        for name, spec in table.items():
            reqs.append(_table_requirement(name, spec))
    elif table is not None:
        raise ConfigError(f"[tool.{Constants.TOOL_SECTION}.dependencies] must be a table")
    else:
        for line in project.get("dependencies") or []:
            reqs.append(parse_requirement(line))

    version = tool.get("py_version") or python_version or current_python_version()
    logger.debug("Loaded %d requirements from %s", len(reqs), path)
    return Manifest(requirements=tuple(reqs), python_version=str(version), name=tool.get("name") or project.get("name"))


def load_requirements_txt(path: Union[str, Path], python_version: Optional[str] = None) -> Manifest:
    """Read a pip ``requirements.txt``; option lines and editables are skipped."""
    path = Path(path)
    try:
        body = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Manifest not found: {path}") from exc

    reqs: List[Requirement] = []
    for parsed in requirements.parse(body):
        name = getattr(parsed, "name", None)
        if not isinstance(name, str) or not name:
            logger.warning("Skipping unnamed requirement: %s", getattr(parsed, "line", parsed))
            continue
        if getattr(parsed, "editable", False) or getattr(parsed, "vcs", None):
            logger.warning("Skipping editable or VCS requirement: %s", name)
            continue
        uri = getattr(parsed, "uri", None)
        if uri:
            text = f"{name} @ {uri}"
        else:
            text = parsed.line.split(" --", 1)[0].strip()
        reqs.append(parse_requirement(text))
    return Manifest(requirements=tuple(reqs), python_version=python_version or current_python_version())


def load_manifest(project_dir: Union[str, Path], python_version: Optional[str] = None) -> Manifest:
    """``pyproject.toml`` if present, else ``requirements.txt``."""
    project_dir = Path(project_dir)
    pyproject = project_dir / Constants.PYPROJECT_TOML_FILE
    if pyproject.is_file():
        return load_pyproject(pyproject, python_version)
    reqs_file = project_dir / Constants.REQUIREMENTS_FILE
    if reqs_file.is_file():
        return load_requirements_txt(reqs_file, python_version)
    raise ConfigError(f"No {Constants.PYPROJECT_TOML_FILE} or {Constants.REQUIREMENTS_FILE} in {project_dir}")
