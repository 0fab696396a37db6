"""Tests for EngineConfig loading and validation."""
from __future__ import annotations

from pathlib import Path

import pytest

from fileseek.config import EngineConfig
from fileseek.errors import ConfigError


def _write(tmp_path: Path, body: str) -> Path:
    p = tmp_path / "config.toml"
    p.write_text(body, encoding="utf-8")
    return p


class TestFromToml:

    def test_minimal_config_uses_defaults(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("HF_OFFLINE_MODE", raising=False)
        cfg = EngineConfig.from_toml(_write(tmp_path, f'[index]\ndir = "{tmp_path / "idx"}"\n'))
        assert cfg.index_dir == (tmp_path / "idx").resolve()
        assert cfg.min_chunk_chars == 500
        assert cfg.max_chunk_chars == 1500
        assert cfg.max_chunks == 100
        assert cfg.max_text_chars == 100_000
        assert cfg.chunk_failure_threshold == 0.25
        assert cfg.vector_db_path.name == "vectors.sqlite"
        assert cfg.filename_index_path.name == "filename_index.json"
        assert cfg.offline_mode is False

    def test_all_sections(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("HF_OFFLINE_MODE", raising=False)
        body = f"""
[index]
dir = "{tmp_path / 'idx'}"
roots = ["{tmp_path}"]
ignore = ["**/*.tmp"]
extraction_workers = 2
debounce_ms = 100

[chunking]
min_chars = 100
max_chars = 400
max_chunks = 10

[embeddings]
device = "cpu"
text_dim = 128
image_dim = 64
enable_images = false
timeout_s = 5
max_retries = 1
backoff_ms = 50
queue_size = 4
chunk_failure_threshold = 0.5

[search]
limit = 5
min_score = 0.3
max_distance = 1
cross_modal = false

[logging]
level = "debug"
"""
        cfg = EngineConfig.from_toml(_write(tmp_path, body))
        assert cfg.roots == [tmp_path.resolve()]
        assert cfg.ignore == ["**/*.tmp"]
        assert (cfg.min_chunk_chars, cfg.max_chunk_chars, cfg.max_chunks) == (100, 400, 10)
        assert (cfg.text_dim, cfg.image_dim) == (128, 64)
        assert cfg.enable_images is False
        assert (cfg.embed_timeout_s, cfg.embed_max_retries, cfg.embed_backoff_ms) == (5.0, 1, 50)
        assert cfg.embed_queue_size == 4
        assert (cfg.search_limit, cfg.min_score, cfg.max_distance) == (5, 0.3, 1)
        assert cfg.cross_modal is False
        assert cfg.log_level == "DEBUG"

    def test_missing_index_dir(self, tmp_path: Path):
        with pytest.raises(ConfigError, match=r"\[index\].dir"):
            EngineConfig.from_toml(_write(tmp_path, "[index]\nroots = []\n"))

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            EngineConfig.from_toml(tmp_path / "absent.toml")

    def test_invalid_toml(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Invalid TOML"):
            EngineConfig.from_toml(_write(tmp_path, "[index\n"))

    def test_env_overrides_offline_mode(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("HF_OFFLINE_MODE", "1")
        monkeypatch.setenv("HF_HUB_OFFLINE", "1")
        monkeypatch.setenv("TRANSFORMERS_OFFLINE", "1")
        body = f'[index]\ndir = "{tmp_path}"\n[embeddings]\noffline_mode = false\n'
        assert EngineConfig.from_toml(_write(tmp_path, body)).offline_mode is True


class TestValidate:

    @pytest.mark.parametrize("overrides", [
        {"min_chunk_chars": 600, "max_chunk_chars": 500},
        {"extraction_workers": 0},
        {"chunk_failure_threshold": 1.5},
        {"embedding_device": "tpu"},
        {"max_distance": -1},
        {"log_level": "LOUD"},
    ])
    def test_rejects_invalid_values(self, tmp_path: Path, overrides):
        with pytest.raises(ConfigError):
            EngineConfig(index_dir=tmp_path, **overrides).validate()

    def test_string_paths_expanded(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("FILESEEK_TEST_DIR", str(tmp_path))
        cfg = EngineConfig(index_dir="$FILESEEK_TEST_DIR/idx", roots=["$FILESEEK_TEST_DIR"])
        assert cfg.index_dir == tmp_path / "idx"
        assert cfg.roots == [tmp_path]
