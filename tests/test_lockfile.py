"""Tests for the lockfile model and its TOML form."""

import pytest

from errors import CorruptLockfile
from lockfile import (
    LockEntry,
    Lockfile,
    from_persisted_form,
    read_lockfile,
    requirements_hash,
    to_persisted_form,
    write_lockfile,
)
from registry.memory import InMemoryIndexClient
from resolver.engine import resolve
from versioning import parse_requirement


def _entry(name, version="1.0", deps=(), digest="sha256:" + "0" * 64):
    return LockEntry(
        name=name,
        version=version,
        source=f"https://files.example/{name}-{version}-py3-none-any.whl",
        digest=digest,
        filename=f"{name}-{version}-py3-none-any.whl",
        dependencies=tuple(deps),
    )


def _lockfile(entries, roots=("a",), python="3.11"):
    requirements = [parse_requirement(r) for r in roots]
    return Lockfile(python, requirements_hash(requirements, python), tuple(entries))


class TestRoundTrip:
    """Persisted form round trips exactly."""

    @pytest.mark.parametrize(
        "entries",
        [
            [],
            [_entry("a")],
            [_entry("c"), _entry("a", deps=("b", "c")), _entry("b", "2.0rc1", digest=None)],
        ],
        ids=["empty", "single", "several"],
    )
    def test_round_trip(self, entries):
        lockfile = _lockfile(entries)
        text = to_persisted_form(lockfile)
        parsed = from_persisted_form(text)
        assert parsed == lockfile
        assert to_persisted_form(parsed) == text

    def test_entries_sorted_by_name(self):
        lockfile = _lockfile([_entry("zeta"), _entry("alpha"), _entry("mid")])
        text = to_persisted_form(lockfile)
        assert text.index('name = "alpha"') < text.index('name = "mid"') < text.index('name = "zeta"')
        assert text.startswith("[metadata]")

    def test_atomic_write_and_read(self, tmp_path):
        path = tmp_path / "nested" / "pypackage.lock"
        lockfile = _lockfile([_entry("a")])
        write_lockfile(path, lockfile)
        assert read_lockfile(path) == lockfile
        assert [p.name for p in path.parent.iterdir()] == ["pypackage.lock"]


class TestCorruption:
    """Structural problems raise CorruptLockfile."""

    @pytest.mark.parametrize(
        "text",
        [
            "this is [not toml",
            "[[package]]\nname = 'a'\n",
            "[metadata]\nlock-version = 'one'\npython-version = '3.11'\nrequirements-hash = 'x'\n",
            "[metadata]\nlock-version = 1\npython-version = '3.11'\nrequirements-hash = 'x'\n"
            "[[package]]\nname = 'a'\nsource = 'https://x'\n",
            "[metadata]\nlock-version = 1\npython-version = '3.11'\nrequirements-hash = 'x'\n"
            "[[package]]\nname = 'a'\nversion = 'not a version'\nsource = 'https://x'\n",
            "[metadata]\nlock-version = 1\npython-version = '3.11'\nrequirements-hash = 'x'\n"
            "[[package]]\nname = 'a'\nversion = '1.0'\nsource = 'https://x'\ndependencies = 'b'\n",
            "[metadata]\nlock-version = 1\npython-version = '3.11'\nrequirements-hash = 'x'\n"
            "[[package]]\nname = 'a'\nversion = '1.0'\nsource = 'https://x'\n"
            "[[package]]\nname = 'a'\nversion = '2.0'\nsource = 'https://y'\n",
            "[metadata]\nlock-version = 1\npython-version = '3.11'\nrequirements-hash = 'x'\n"
            "[[package]]\nname = 'a'\nversion = '1.0'\nsource = 'https://x'\ndigest = 'nosuch:abc'\n",
            "[metadata]\nlock-version = 1\npython-version = '3.11'\nrequirements-hash = 'x'\n"
            "[[package]]\nname = 'a'\nversion = '1.0'\nsource = 'https://x'\ndigest = 'sha256:not-hex'\n",
        ],
        ids=[
            "not-toml",
            "no-metadata",
            "bad-lock-version",
            "no-version",
            "bad-version",
            "bad-deps",
            "duplicate",
            "unknown-digest-algorithm",
            "digest-not-hex",
        ],
    )
    def test_corrupt(self, text):
        with pytest.raises(CorruptLockfile):
            from_persisted_form(text)

    def test_non_utf8_file(self, tmp_path):
        path = tmp_path / "pypackage.lock"
        path.write_bytes(b"\xff\xfe\x00garbage")
        with pytest.raises(CorruptLockfile):
            read_lockfile(path)


class TestValidity:
    """is_valid_for re-validates against the current manifest."""

    def _resolved(self):
        index = InMemoryIndexClient({"a": {"1.0": ["b"]}, "b": {"1.0": []}})
        roots = [parse_requirement("a>=1.0")]
        graph = resolve(roots, index, python_version="3.11")
        return Lockfile.from_graph(graph, roots, "3.11"), roots

    def test_valid_for_same_inputs(self):
        lockfile, roots = self._resolved()
        assert lockfile.is_valid_for(roots, "3.11")
        assert lockfile.problems(roots, "3.11") == []

    def test_invalid_for_other_interpreter(self):
        lockfile, roots = self._resolved()
        assert not lockfile.is_valid_for(roots, "3.12")

    def test_invalid_when_requirements_change(self):
        lockfile, _ = self._resolved()
        assert not lockfile.is_valid_for([parse_requirement("a>=2.0")], "3.11")

    def test_invalid_when_dependency_missing(self):
        roots = [parse_requirement("a")]
        lockfile = _lockfile([_entry("a", deps=("b",))], roots=("a",))
        problems = lockfile.problems(roots, "3.11")
        assert problems == ["a 1.0 depends on unlocked b"]

    def test_locked_pins(self):
        lockfile, _ = self._resolved()
        pins = lockfile.locked_pins()
        assert str(pins["a"].version) == "1.0"
        assert pins["b"].source == lockfile.get("b").source

    def test_hand_edited_names_are_normalized(self):
        roots = [parse_requirement("foo-bar")]
        text = (
            "[metadata]\nlock-version = 1\npython-version = '3.11'\n"
            f"requirements-hash = '{requirements_hash(roots, '3.11')}'\n"
            "[[package]]\nname = 'Foo_Bar'\nversion = '1.0'\nsource = 'https://x/foo_bar-1.0.tar.gz'\n"
            "dependencies = ['Zope.Interface']\n"
            "[[package]]\nname = 'zope-interface'\nversion = '5.0'\nsource = 'https://x/zope.interface-5.0.tar.gz'\n"
        )
        lockfile = from_persisted_form(text)
        assert [e.name for e in lockfile.entries] == ["foo-bar", "zope-interface"]
        assert lockfile.get("foo-bar").dependencies == ("zope-interface",)
        assert lockfile.is_valid_for(roots, "3.11")
