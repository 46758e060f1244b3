"""Tests for layered settings."""

import json

import pytest

from constants import Constants, PrereleasePolicy, SourceOrigin
from errors import ConfigError
from settings import Settings, load_settings


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings(environ={})
        assert settings.index_url == Constants.INDEX_URL
        assert settings.prerelease_policy == PrereleasePolicy.EXCLUDE
        assert settings.source_policy().prefer == SourceOrigin.INDEX

    def test_yaml_file_with_section(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(
            "pypackage:\n"
            "  index_url: https://mirror.example/pypi/\n"
            "  prerelease-policy: if-necessary\n"
            "  download_concurrency: 8\n"
            "  require_digest: false\n"
        )
        settings = load_settings(path, environ={})
        assert settings.index_url == "https://mirror.example/pypi/"
        assert settings.prerelease_policy == PrereleasePolicy.IF_NECESSARY
        assert settings.download_concurrency == 8
        assert settings.require_digest is False

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"prefer": "direct", "request_timeout": 2.5}))
        settings = load_settings(path, environ={})
        assert settings.prefer == SourceOrigin.DIRECT
        assert settings.request_timeout == 2.5

    def test_environment_beats_file_and_overrides_beat_environment(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("download_retries: 2\nlock_wait: true\n")
        environ = {"PYPACKAGE_DOWNLOAD_RETRIES": "5", "PYPACKAGE_LOCK_WAIT": "no"}
        settings = load_settings(path, overrides={"download_retries": 7}, environ=environ)
        assert settings.download_retries == 7
        assert settings.lock_wait is False

    @pytest.mark.parametrize(
        "overrides",
        [
            {"download_concurrency": "many"},
            {"prerelease_policy": "sometimes"},
            {"no_such_setting": 1},
            {"download_concurrency": 0},
            {"allow_index": False, "allow_direct": False},
            {"lock_wait": "maybe"},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigError):
            load_settings(overrides=overrides, environ={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "absent.yml", environ={})

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_settings(path, environ={})

    def test_replace_coerces(self):
        settings = Settings().replace(prefer="direct")
        assert settings.prefer == SourceOrigin.DIRECT
