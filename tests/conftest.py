"""Shared fixtures: archive builders and a populated in-memory index."""

import io
import tarfile
import zipfile

import pytest

from registry.memory import InMemoryIndexClient


def build_wheel(name, version, modules=None, console_scripts=None):
    """Bytes of a minimal pure-Python wheel."""
    modules = modules or {f"{name.replace('-', '_')}/__init__.py": f"VERSION = {version!r}\n"}
    dist_info = f"{name.replace('-', '_')}-{version}.dist-info"
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path, body in sorted(modules.items()):
            archive.writestr(path, body)
        archive.writestr(f"{dist_info}/METADATA", f"Name: {name}\nVersion: {version}\n")
        if console_scripts:
            lines = "\n".join(f"{k} = {v}" for k, v in console_scripts.items())
            archive.writestr(f"{dist_info}/entry_points.txt", f"[console_scripts]\n{lines}\n")
    return buffer.getvalue()


def build_tar_gz(members):
    """Bytes of a tar.gz; ``members`` maps names to bytes, or to a TarInfo-type tweak dict."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, spec in members.items():
            info = tarfile.TarInfo(name)
            if isinstance(spec, dict):
                info.type = spec["type"]
                info.linkname = spec.get("linkname", "")
                archive.addfile(info)
            else:
                info.size = len(spec)
                archive.addfile(info, io.BytesIO(spec))
    return buffer.getvalue()


def build_zip(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, body in members.items():
            archive.writestr(name, body)
    return buffer.getvalue()


def build_corrupt_zip(name, version):
    """A stored wheel-shaped zip whose module bytes no longer match their CRC."""
    module = f"{name}/__init__.py"
    data = build_zip({module: b"VALUE = 'original'\n", f"{name}-{version}.dist-info/METADATA": b"Name: x\n"})
    return data.replace(b"original", b"tampered", 1)


@pytest.fixture
def wheel_bytes():
    return build_wheel


@pytest.fixture
def tar_gz_bytes():
    return build_tar_gz


@pytest.fixture
def corrupt_zip_bytes():
    return build_corrupt_zip


@pytest.fixture
def zip_bytes():
    return build_zip


@pytest.fixture
def demo_index():
    """Index where every release carries a real wheel payload."""
    def make(releases=None):
        releases = releases or {
            "app": {"1.0": ["helper>=1.0"]},
            "helper": {"1.0": [], "1.1": []},
        }
        packages = {}
        for name, versions in releases.items():
            packages[name] = {}
            for version, requires in versions.items():
                packages[name][version] = {
                    "requires": requires,
                    "payload": build_wheel(name, version, console_scripts={name: f"{name.replace('-', '_')}:main"}),
                }
        return InMemoryIndexClient(packages)
    return make
