"""Tests for service configuration.

These tests demonstrate:
1. Configuration validation
2. Environment variable loading
3. Default value behavior
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from book_lending.config import LendingConfig, get_config, reset_config


class TestLendingConfig:
    def test_default_configuration(self):
        config = LendingConfig()

        assert config.server_name == "book-lending"
        assert config.transport == "stdio"
        assert config.database_path == Path("data/book_lending.db").absolute()
        assert config.database_url is None
        assert config.api_prefix == "/api/v1"
        assert config.identity_header == "X-Member-Id"
        assert config.identity_name_header == "X-Member-Name"
        assert config.identity_email_header == "X-Member-Email"
        assert config.http_port == 8080
        assert config.max_conflict_retries == 3

    def test_environment_variable_loading(self):
        env_vars = {
            "BOOK_LENDING_SERVER_NAME": "lending-staging",
            "BOOK_LENDING_DATABASE_URL": "postgresql+psycopg://lend:pw@db/lending",
            "BOOK_LENDING_MAX_CONFLICT_RETRIES": "5",
            "BOOK_LENDING_DEBUG": "true",
            "BOOK_LENDING_CORS_ORIGINS": '["https://books.example.net"]',
        }

        with patch.dict(os.environ, env_vars):
            config = LendingConfig()

            assert config.server_name == "lending-staging"
            assert config.max_conflict_retries == 5
            assert config.debug is True
            assert config.cors_origins == ["https://books.example.net"]
            assert config.get_database_url() == "postgresql+psycopg://lend:pw@db/lending"

    def test_server_name_validation(self):
        for name in ["book-lending", "lend-123"]:
            assert LendingConfig(server_name=name).server_name == name

        for name in ["Book_Lending", "book lending", "ab", "a" * 51]:
            with pytest.raises(ValidationError):
                LendingConfig(server_name=name)

    def test_version_validation(self):
        for version in ["1.0.0", "0.1.0", "1.0.0-beta.1"]:
            assert LendingConfig(server_version=version).server_version == version

        for version in ["1.0", "v1.0.0", "latest"]:
            with pytest.raises(ValidationError):
                LendingConfig(server_version=version)

    def test_transport_validation(self):
        assert LendingConfig(transport="http").transport == "http"
        with pytest.raises(ValidationError):
            LendingConfig(transport="sse")

    def test_retry_bounds(self):
        assert LendingConfig(max_conflict_retries=0).max_conflict_retries == 0
        with pytest.raises(ValidationError):
            LendingConfig(max_conflict_retries=-1)
        with pytest.raises(ValidationError):
            LendingConfig(max_conflict_retries=11)

    def test_port_validation(self):
        with pytest.raises(ValidationError):
            LendingConfig(http_port=1023)
        with pytest.raises(ValidationError):
            LendingConfig(http_port=65536)

    def test_database_url_from_path(self, tmp_path):
        config = LendingConfig(database_path=tmp_path / "lending.db")

        url = config.get_database_url()

        assert url.startswith("sqlite:///")
        assert url.endswith("lending.db")

    def test_is_development(self):
        assert LendingConfig(debug=False, log_level="INFO").is_development is False
        assert LendingConfig(debug=True, log_level="INFO").is_development is True
        assert LendingConfig(debug=False, log_level="DEBUG").is_development is True


def test_get_config_is_cached_until_reset():
    reset_config()
    first = get_config()
    assert get_config() is first

    reset_config()
    assert get_config() is not first
