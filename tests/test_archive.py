"""Tests for archive readers and safe extraction."""

import os
import tarfile

import pytest

from archive import TarGzArchive, ZipArchive, extract, open_archive, read_console_scripts, safe_entry_path
from errors import ArchiveTooLarge, CorruptArchive, UnsafeArchiveEntry, UnsupportedArchive


def _write(tmp_path, name, data):
    path = tmp_path / name
    path.write_bytes(data)
    return path


class TestReaders:
    """Format detection and entry listing."""

    def test_open_archive_by_content(self, tmp_path, zip_bytes, tar_gz_bytes):
        zipped = _write(tmp_path, "weird-name.bin", zip_bytes({"a.txt": b"x"}))
        tarred = _write(tmp_path, "pkg-1.0.tar.gz", tar_gz_bytes({"pkg-1.0/a.txt": b"x"}))
        with open_archive(zipped) as reader:
            assert isinstance(reader, ZipArchive)
            assert [e.path for e in reader.entries()] == ["a.txt"]
        with open_archive(tarred) as reader:
            assert isinstance(reader, TarGzArchive)
            entry = reader.entries()[0]
            assert (entry.path, entry.size) == ("pkg-1.0/a.txt", 1)
            assert reader.read(entry) == b"x"

    def test_unknown_format(self, tmp_path):
        with pytest.raises(UnsupportedArchive):
            open_archive(_write(tmp_path, "plain.txt", b"hello"))


class TestEntryPaths:
    @pytest.mark.parametrize("name", ["/etc/passwd", "C:/evil", "../escape", "a/../../escape", "..\\x"])
    def test_rejected(self, name):
        with pytest.raises(UnsafeArchiveEntry):
            safe_entry_path(name)

    def test_normalized(self):
        assert safe_entry_path("./pkg//mod.py") == "pkg/mod.py"


class TestExtract:
    """Extraction of wheels and source archives."""

    def test_wheel(self, tmp_path, wheel_bytes):
        archive = _write(tmp_path, "demo-1.0-py3-none-any.whl", wheel_bytes("demo", "1.0", console_scripts={"demo": "demo:main"}))
        result = extract(archive, tmp_path / "out")
        assert result.kind == "wheel"
        assert result.modules == ("demo",)
        assert "demo-1.0.dist-info" in result.top_level
        assert result.console_scripts == {"demo": "demo:main"}
        assert (tmp_path / "out" / "demo" / "__init__.py").read_text() == "VERSION = '1.0'\n"
        assert "demo/__init__.py" in result.files

    def test_sdist_is_flattened(self, tmp_path, tar_gz_bytes):
        archive = _write(
            tmp_path,
            "demo-1.0.tar.gz",
            tar_gz_bytes({"demo-1.0/setup.py": b"", "demo-1.0/demo/__init__.py": b"", "demo-1.0/single.py": b""}),
        )
        result = extract(archive, tmp_path / "out")
        assert result.kind == "sdist"
        assert (tmp_path / "out" / "demo" / "__init__.py").is_file()
        assert not (tmp_path / "out" / "demo-1.0").exists()
        assert result.modules == ("demo", "setup", "single")

    def test_traversal_rejected_and_nothing_written(self, tmp_path, tar_gz_bytes):
        archive = _write(tmp_path, "evil.tar.gz", tar_gz_bytes({"ok.txt": b"fine", "../../escape": b"pwned"}))
        dest = tmp_path / "deep" / "er" / "out"
        with pytest.raises(UnsafeArchiveEntry):
            extract(archive, dest)
        assert not dest.exists()
        assert not (tmp_path / "escape").exists()
        assert not (tmp_path / "deep" / "escape").exists()

    def test_zip_traversal_rejected(self, tmp_path, zip_bytes):
        archive = _write(tmp_path, "evil.zip", zip_bytes({"../../escape": b"pwned"}))
        with pytest.raises(UnsafeArchiveEntry):
            extract(archive, tmp_path / "a" / "b")
        assert not (tmp_path / "escape").exists()

    def test_symlink_escape_rejected(self, tmp_path, tar_gz_bytes):
        archive = _write(
            tmp_path,
            "link.tar.gz",
            tar_gz_bytes({"pkg/link": {"type": tarfile.SYMTYPE, "linkname": "../../outside"}}),
        )
        with pytest.raises(UnsafeArchiveEntry):
            extract(archive, tmp_path / "out")

    def test_absolute_symlink_rejected(self, tmp_path, tar_gz_bytes):
        archive = _write(tmp_path, "abs.tar.gz", tar_gz_bytes({"pkg/link": {"type": tarfile.SYMTYPE, "linkname": "/etc/passwd"}}))
        with pytest.raises(UnsafeArchiveEntry):
            extract(archive, tmp_path / "out")

    def test_internal_symlink_allowed(self, tmp_path, tar_gz_bytes):
        archive = _write(
            tmp_path,
            "ok.tar.gz",
            tar_gz_bytes({"pkg/real.py": b"x = 1\n", "pkg/alias.py": {"type": tarfile.SYMTYPE, "linkname": "real.py"}}),
        )
        result = extract(archive, tmp_path / "out")
        assert (result.root / "alias.py").read_text() == "x = 1\n"

    def test_device_rejected(self, tmp_path, tar_gz_bytes):
        archive = _write(tmp_path, "dev.tar.gz", tar_gz_bytes({"pkg/dev": {"type": tarfile.CHRTYPE}}))
        with pytest.raises(UnsafeArchiveEntry):
            extract(archive, tmp_path / "out")

    def test_declared_size_over_limit(self, tmp_path, zip_bytes):
        archive = _write(tmp_path, "big.zip", zip_bytes({"a.bin": b"0" * 2048}))
        with pytest.raises(ArchiveTooLarge) as excinfo:
            extract(archive, tmp_path / "out", max_total_size=1024)
        assert excinfo.value.limit == 1024
        assert not (tmp_path / "out").exists()

    def test_bad_crc_is_corrupt_archive(self, tmp_path, corrupt_zip_bytes):
        archive = _write(tmp_path, "bad-1.0-py3-none-any.whl", corrupt_zip_bytes("bad", "1.0"))
        with pytest.raises(CorruptArchive) as excinfo:
            extract(archive, tmp_path / "out")
        assert excinfo.value.path == str(archive)
        assert not (tmp_path / "out").exists()

    def test_truncated_tar_gz_is_corrupt_archive(self, tmp_path, tar_gz_bytes):
        data = tar_gz_bytes({"pkg-1.0/pkg/blob.bin": os.urandom(200_000), "pkg-1.0/pkg/tail.py": b"x = 1\n"})
        archive = _write(tmp_path, "pkg-1.0.tar.gz", data[: len(data) // 2])
        with pytest.raises(CorruptArchive):
            extract(archive, tmp_path / "out")
        assert not (tmp_path / "out").exists()


class TestConsoleScripts:
    def test_parse(self):
        text = "[console_scripts]\nTool = pkg.cli:main\n\n[gui_scripts]\ngui = pkg:gui\n"
        assert read_console_scripts(text) == {"Tool": "pkg.cli:main"}

    def test_missing_section(self):
        assert read_console_scripts("[other]\na = b\n") == {}
