"""Tests for manifest loading."""

import pytest

from errors import ConfigError, InvalidRequirement
from versioning.parser import parse_version
from manifest import Manifest, load_manifest, load_pyproject, load_requirements_txt


class TestPyproject:
    def test_tool_table(self, tmp_path):
        path = tmp_path / "pyproject.toml"
        path.write_text(
            "[project]\nname = \"demo-app\"\n\n"
            "[tool.pypackage]\npy_version = \"3.10\"\n\n"
            "[tool.pypackage.dependencies]\n"
            "requests = \"^2.28\"\n"
            "anything = \"*\"\n"
            "rich = { version = \">=13\", extras = [\"jupyter\"], markers = 'python_version >= \"3.8\"' }\n"
            "local = { url = \"https://host.example/local-1.0-py3-none-any.whl\" }\n"
        )
        manifest = load_pyproject(path)
        assert manifest.name == "demo-app"
        assert manifest.python_version == "3.10"
        by_name = {r.name: r for r in manifest.requirements}
        assert str(by_name["requests"]) == "requests^2.28"
        assert by_name["anything"].constraint.is_any
        assert by_name["rich"].extras == ("jupyter",)
        assert by_name["rich"].marker is not None
        assert by_name["local"].url == "https://host.example/local-1.0-py3-none-any.whl"

    def test_pep621_dependencies_fallback(self, tmp_path):
        path = tmp_path / "pyproject.toml"
        path.write_text('[project]\nname = "x"\ndependencies = ["idna>=3", "certifi"]\n')
        manifest = load_pyproject(path, python_version="3.12.1")
        assert manifest.names == ["certifi", "idna"]
        assert manifest.python_version == "3.12"

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "pyproject.toml"
        path.write_text("[tool.pypackage\n")
        with pytest.raises(ConfigError):
            load_pyproject(path)

    def test_bad_dependency_value(self, tmp_path):
        path = tmp_path / "pyproject.toml"
        path.write_text("[tool.pypackage.dependencies]\nfoo = 3\n")
        with pytest.raises(InvalidRequirement):
            load_pyproject(path)


class TestRequirementsTxt:
    def test_parses_specs_and_skips_options(self, tmp_path):
        path = tmp_path / "requirements.txt"
        path.write_text(
            "# comment\n"
            "--index-url https://mirror.example/simple\n"
            "requests>=2.0,<3\n"
            "Flask_RESTful==0.3.9\n"
        )
        manifest = load_requirements_txt(path, python_version="3.11")
        assert manifest.names == ["flask-restful", "requests"]
        by_name = {r.name: r for r in manifest.requirements}
        assert by_name["requests"].constraint.contains(parse_version("2.5"))

    def test_missing(self, tmp_path):
        with pytest.raises(ConfigError):
            load_requirements_txt(tmp_path / "requirements.txt")


class TestDiscovery:
    def test_prefers_pyproject(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text('[project]\ndependencies = ["a"]\n')
        (tmp_path / "requirements.txt").write_text("b\n")
        assert load_manifest(tmp_path, "3.11").names == ["a"]

    def test_falls_back_to_requirements(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("b\n")
        assert load_manifest(tmp_path, "3.11").names == ["b"]

    def test_nothing_found(self, tmp_path):
        with pytest.raises(ConfigError):
            load_manifest(tmp_path)

    def test_from_strings(self):
        manifest = Manifest.from_strings(["a>=1", "b"], python_version="3.11")
        assert manifest.names == ["a", "b"]
