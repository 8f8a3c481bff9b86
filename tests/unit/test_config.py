"""
Unit tests for ferry.config module.

Created by orpheus497
"""

import pytest

from ferry.config import DEFAULT_CONFIG, Config
from ferry.constants import MAX_CHUNK_SIZE
from ferry.errors import ConfigError, ErrorCode


class TestConfigLoading:
    """Test defaults, files and environment overrides."""

    def test_defaults_without_file(self, temp_dir):
        config = Config(temp_dir / "config.toml")
        assert config.get("directory", "backend") == "file"
        assert config.get("codes", "length") == 6
        assert config.get("transfer", "chunk_size") == 16384
        assert config.to_dict() == DEFAULT_CONFIG

    def test_missing_key_default(self, temp_dir):
        config = Config(temp_dir / "config.toml")
        assert config.get("nope", "key", "fallback") == "fallback"

    def test_file_merges_with_defaults(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text('[directory]\nbackend = "memory"\n\n[transfer]\nchunk_size = 4096\n')

        config = Config(path)
        assert config.get("directory", "backend") == "memory"
        assert config.get("directory", "ttl") == DEFAULT_CONFIG["directory"]["ttl"]
        assert config.get("transfer", "chunk_size") == 4096

    def test_defaults_not_mutated(self, temp_dir):
        config = Config(temp_dir / "config.toml")
        config.set("codes", "length", 9)
        assert DEFAULT_CONFIG["codes"]["length"] == 6

    def test_env_override(self, temp_dir, monkeypatch):
        monkeypatch.setenv("FERRY_DIRECTORY_BACKEND", "http")
        monkeypatch.setenv("FERRY_CODES_LENGTH", "8")
        monkeypatch.setenv("FERRY_SHARE_INCLUDE_PEER", "no")

        config = Config(temp_dir / "config.toml")
        assert config.get("directory", "backend") == "http"
        assert config.get("codes", "length") == 8
        assert config.get("share", "include_peer") is False

    def test_env_override_bad_type(self, temp_dir, monkeypatch):
        monkeypatch.setenv("FERRY_CODES_LENGTH", "six")
        with pytest.raises(ConfigError) as exc_info:
            Config(temp_dir / "config.toml")
        assert exc_info.value.code == ErrorCode.E703_INVALID_CONFIG

    def test_parse_error(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[directory\nbackend = ")
        with pytest.raises(ConfigError) as exc_info:
            Config(path)
        assert exc_info.value.code == ErrorCode.E704_CONFIG_PARSE_ERROR


class TestConfigValidation:
    """Values the application cannot run with are rejected at load."""

    @pytest.mark.parametrize(
        "content",
        [
            '[directory]\nbackend = "ftp"\n',
            "[transfer]\nchunk_size = 0\n",
            '[transfer]\nchunk_size = "big"\n',
            "[network]\nconnect_timeout = 0\n",
        ],
    )
    def test_invalid_values(self, temp_dir, content):
        path = temp_dir / "config.toml"
        path.write_text(content)
        with pytest.raises(ConfigError):
            Config(path)

    def test_chunk_size_upper_bound(self, temp_dir, monkeypatch):
        monkeypatch.setenv("FERRY_TRANSFER_CHUNK_SIZE", str(MAX_CHUNK_SIZE))
        assert Config(temp_dir / "config.toml").get("transfer", "chunk_size") == MAX_CHUNK_SIZE

        monkeypatch.setenv("FERRY_TRANSFER_CHUNK_SIZE", str(MAX_CHUNK_SIZE + 1))
        with pytest.raises(ConfigError) as exc_info:
            Config(temp_dir / "config.toml")
        assert exc_info.value.code == ErrorCode.E703_INVALID_CONFIG


class TestConfigSaving:
    """Test writing configuration back out."""

    def test_save_and_reload(self, temp_dir):
        path = temp_dir / "nested" / "config.toml"
        config = Config(path)
        config.set("directory", "backend", "memory")
        config.set("share", "base_url", "https://share.example/")
        config.save()

        reloaded = Config(path)
        assert reloaded.get("directory", "backend") == "memory"
        assert reloaded.get("share", "base_url") == "https://share.example/"
        assert reloaded.get("logging", "file_logging") is False

    def test_create_example(self, temp_dir):
        path = temp_dir / "example.toml"
        Config.create_example(path)

        text = path.read_text()
        assert text.startswith("# Ferry Configuration File")
        assert Config(path).to_dict() == DEFAULT_CONFIG
