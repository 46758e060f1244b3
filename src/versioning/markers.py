"""Interpreter-dependent predicates: marker environments and wheel tag checks."""

import re
from typing import Callable, Dict, Optional

from packaging.markers import default_environment

from errors import InvalidRequirement
from .models import Version
from .parser import parse_constraint

_PY_TAG_RE = re.compile(r"^(?:cp|py|pp)?([23])(\d+)?$")


def target_environment(python_version: str) -> Dict[str, str]:
    """Marker environment for the target interpreter.

    Host values (platform, implementation) come from the running process; only
    the interpreter version fields are replaced with the target's.
    """
    target = Version(python_version)
    env = dict(default_environment())
    env["python_version"] = f"{target.major}.{target.minor}"
    env["python_full_version"] = ".".join(
        str(p) for p in (target.release + (0, 0))[:3]
    )
    return env


def python_tag_matches(tag: str, python_version: str) -> bool:
    """Check a wheel python tag such as ``py3``, ``cp311`` or ``py2.py3``.

    Dotted tags are alternatives: any component matching is enough.
    A bare major tag (``py3``) matches every minor release of that major.
    """
    target = Version(python_version)
    if tag == "any":
        return True
    for part in tag.split("."):
        match = _PY_TAG_RE.match(part)
        if not match:
            continue
        major = int(match.group(1))
        if major != target.major:
            continue
        minor = match.group(2)
        if minor is None or int(minor) == target.minor:
            return True
    return False


def requires_python_ok(requires_python: Optional[str], python_version: str) -> bool:
    """True when the candidate's ``requires_python`` admits the target interpreter.

    Unparseable metadata is treated as no restriction.
    """
    if not requires_python:
        return True
    try:
        constraint = parse_constraint(requires_python)
    except InvalidRequirement:
        return True
    target = Version(python_version)
    full = Version(".".join(str(p) for p in (target.release + (0, 0))[:3]))
    return constraint.contains(full)


def default_wheel_predicate(python_version: str) -> Callable[[str], bool]:
    """Accept pure-Python wheels whose python tag matches the interpreter.

    Filenames follow ``name-version(-build)?-python-abi-platform.whl``.
    """
    def _accepts(filename: str) -> bool:
        if not filename.endswith(".whl"):
            return False
        parts = filename[:-4].split("-")
        if len(parts) < 5:
            return False
        python_tag, abi_tag, platform_tag = parts[-3], parts[-2], parts[-1]
        if platform_tag != "any" or abi_tag not in ("none", "abi3"):
            return False
        return python_tag_matches(python_tag, python_version)

    return _accepts
