"""
Tests for settings loading.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from insureflow.config import DEFAULT_API_BASE_URL, load_settings


class TestLoadSettings:

    def test_defaults(self):
        settings = load_settings(environ={})
        assert settings.api_base_url == DEFAULT_API_BASE_URL
        assert settings.quote_base_url is None
        assert settings.audit_dir is None
        assert settings.session_file.name == "auth.json"

    def test_yaml_file(self, tmp_path):
        config = tmp_path / "insureflow.yaml"
        config.write_text("api_base_url: https://example.com/prod/api/\ntimeout: 10\n")

        settings = load_settings(config, environ={})

        assert settings.api_base_url == "https://example.com/prod/api"
        assert settings.timeout == 10

    def test_json_file(self, tmp_path):
        config = tmp_path / "insureflow.json"
        config.write_text(json.dumps({"audit_dir": str(tmp_path / "audit")}))

        settings = load_settings(config, environ={})

        assert settings.audit_dir == tmp_path / "audit"

    def test_environment_overrides_file(self, tmp_path):
        config = tmp_path / "insureflow.yaml"
        config.write_text("api_base_url: https://file.example.com/api\n")
        environ = {
            "INSUREFLOW_API_BASE_URL": "https://env.example.com/api",
            "INSUREFLOW_TIMEOUT": "2.5",
            "INSUREFLOW_SESSION_FILE": str(tmp_path / "session.json"),
        }

        settings = load_settings(config, environ=environ)

        assert settings.api_base_url == "https://env.example.com/api"
        assert settings.timeout == 2.5
        assert settings.session_file == Path(tmp_path / "session.json")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml", environ={})

    def test_rejects_non_http_url(self):
        with pytest.raises(ValidationError):
            load_settings(environ={"INSUREFLOW_API_BASE_URL": "ftp://example.com"})

    def test_rejects_non_mapping(self, tmp_path):
        config = tmp_path / "insureflow.yaml"
        config.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            load_settings(config, environ={})
