"""Tests for configuration validation."""

import os
import pytest
from unittest.mock import patch

from compose_sites.config import Settings, ConfigurationError, validate_config_on_startup


class TestSettingsValidation:
    """Test Settings.validate_required() method."""

    def test_valid_settings_pass(self):
        with patch.object(os.path, 'exists', return_value=True):
            with patch.object(os, 'access', return_value=True):
                settings = Settings(
                    ssh_host="test-host",
                    ssh_user="deploy",
                    ssh_key_path="/path/to/key",
                    environment="development",
                )
                assert settings.validate_required() == []

    def test_missing_ssh_host_fails(self):
        with patch.object(os.path, 'exists', return_value=True):
            with patch.object(os, 'access', return_value=True):
                settings = Settings(
                    ssh_host="",
                    ssh_key_path="/path/to/key",
                )
                errors = settings.validate_required()
                assert any("SSH_HOST" in e for e in errors)

    def test_missing_ssh_key_path_fails(self):
        settings = Settings(ssh_host="test-host", ssh_key_path="")
        errors = settings.validate_required()
        assert any("SSH_KEY_PATH" in e for e in errors)

    def test_nonexistent_ssh_key_fails(self):
        with patch.object(os.path, 'exists', return_value=False):
            settings = Settings(ssh_host="test-host", ssh_key_path="/nonexistent/key")
            errors = settings.validate_required()
            assert any("not found" in e for e in errors)

    def test_unreadable_ssh_key_fails(self):
        with patch.object(os.path, 'exists', return_value=True):
            with patch.object(os, 'access', return_value=False):
                settings = Settings(ssh_host="test-host", ssh_key_path="/path/to/key")
                errors = settings.validate_required()
                assert any("not readable" in e for e in errors)

    def test_inverted_port_range_fails(self):
        with patch.object(os.path, 'exists', return_value=True):
            with patch.object(os, 'access', return_value=True):
                settings = Settings(
                    ssh_host="test-host",
                    ssh_key_path="/path/to/key",
                    auto_port_range_start=40000,
                    auto_port_range_end=30000,
                )
                errors = settings.validate_required()
                assert any("AUTO_PORT_RANGE" in e for e in errors)

    def test_missing_known_hosts_only_warns_in_production(self, caplog):
        with patch.object(os.path, 'exists', return_value=True):
            with patch.object(os, 'access', return_value=True):
                settings = Settings(
                    ssh_host="test-host",
                    ssh_key_path="/path/to/key",
                    environment="production",
                )
                errors = settings.validate_required()

        assert errors == []
        assert "SSH_KNOWN_HOSTS" in caplog.text


class TestSettingsDefaults:
    def test_auto_port_range(self):
        settings = Settings()
        assert settings.auto_port_range_start == 30000
        assert settings.auto_port_range_end == 39999

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("AUTO_PORT_RANGE_START", "35000")
        monkeypatch.setenv("NGINX_VHOST_DIR", "/srv/nginx")
        settings = Settings()
        assert settings.auto_port_range_start == 35000
        assert settings.nginx_vhost_dir == "/srv/nginx"


class TestConfigurationError:
    """Test ConfigurationError exception."""

    def test_configuration_error_is_runtime_error(self):
        exc = ConfigurationError("test error")
        assert isinstance(exc, RuntimeError)

    def test_configuration_error_stores_message(self):
        exc = ConfigurationError("my error message")
        assert "my error message" in str(exc)


class TestValidateConfigOnStartup:
    """Test validate_config_on_startup function."""

    def test_valid_config_does_not_raise(self):
        with patch.object(os.path, 'exists', return_value=True):
            with patch.object(os, 'access', return_value=True):
                settings = Settings(
                    ssh_host="test-host",
                    ssh_key_path="/path/to/key",
                    environment="development",
                )
                validate_config_on_startup(settings)

    def test_invalid_config_raises_configuration_error(self):
        settings = Settings(ssh_host="", ssh_key_path="")
        with pytest.raises(ConfigurationError, match="SSH_HOST"):
            validate_config_on_startup(settings)
