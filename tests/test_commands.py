"""Tests for the command layer and the CLI entry points that need no models."""
from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from fileseek import commands
from fileseek.cli import app
from fileseek.config import EngineConfig
from fileseek.engine import Engine
from fileseek.errors import ConfigError, IndexTargetError, QueryError

from conftest import FakeImageEmbedder, FakeTextEmbedder, make_config


class TestCommands:

    def test_index_then_stats(self, engine: Engine, docs: Path):
        out = commands.dispatch(engine, "index_folder", {"path": str(docs)})
        assert out["indexed"] == 3
        assert commands.dispatch(engine, "get_indexing_stats")["indexed"] == 3

        vec = commands.dispatch(engine, "get_vector_db_stats")
        assert vec["text_count"] == 3
        assert vec["image_count"] == 0
        assert vec["total"] == 3
        assert commands.dispatch(engine, "get_filename_index_stats")["entries"] == 3

    def test_search_commands(self, engine: Engine, docs: Path):
        commands.dispatch(engine, "index_folder", {"path": str(docs)})

        sem = commands.dispatch(engine, "semantic_search", {"query": "fox", "limit": 2})
        assert sem["total"] == 2
        assert sem["mode"] == "semantic"
        assert all(r["modality"] == "text" for r in sem["results"])

        names = commands.dispatch(engine, "filename_search", {"query": "note", "max_distance": 1})
        assert [Path(r["path"]).name for r in names["results"]] == ["notes.md"]
        assert names["results"][0]["distance"] == 1

        combined = commands.dispatch(engine, "combined_search", {"query": "fox", "categories": "Document"})
        assert combined["mode"] == "combined"
        assert combined["total"] >= 2

    def test_empty_query_is_error(self, engine: Engine):
        with pytest.raises(QueryError):
            commands.dispatch(engine, "semantic_search", {"query": ""})

    def test_unknown_command(self, engine: Engine):
        with pytest.raises(QueryError, match="Unknown command"):
            commands.dispatch(engine, "drop_everything")

    def test_missing_path_param(self, engine: Engine):
        with pytest.raises(QueryError, match="path"):
            commands.dispatch(engine, "index_folder", {})

    def test_bad_folder(self, engine: Engine, tmp_path: Path):
        with pytest.raises(IndexTargetError):
            commands.dispatch(engine, "index_folder", {"path": str(tmp_path / "nope")})

    def test_clear_index(self, engine: Engine, docs: Path):
        commands.dispatch(engine, "index_folder", {"path": str(docs)})
        assert commands.dispatch(engine, "clear_index") == {"success": True, "message": "Vector index cleared"}
        assert commands.dispatch(engine, "get_vector_db_stats")["total"] == 0

        # Cleared files are indexed again on the next run
        assert commands.dispatch(engine, "index_folder", {"path": str(docs)})["indexed"] == 3

    def test_filename_commands(self, engine: Engine, docs: Path):
        out = commands.dispatch(engine, "scan_directory_for_filenames", {"path": str(docs)})
        assert out == {"files_added": 3, "errors": []}
        assert commands.dispatch(engine, "clear_filename_index") == {}
        assert commands.dispatch(engine, "get_filename_index_stats")["entries"] == 0


class TestEngine:

    def test_filename_index_persists_across_engines(self, tmp_path: Path, docs: Path):
        cfg = make_config(tmp_path)
        with Engine(cfg, text_embedder=FakeTextEmbedder(), image_embedder=FakeImageEmbedder()) as eng:
            eng.coordinator.index_folder(docs)
        with Engine(cfg, text_embedder=FakeTextEmbedder(), image_embedder=FakeImageEmbedder()) as eng:
            assert len(eng.filename_index) == 3
            assert eng.store.stats()["files"] == 3

    def test_unreadable_filename_index_is_ignored(self, tmp_path: Path):
        cfg = make_config(tmp_path)
        cfg.index_dir.mkdir(parents=True)
        cfg.filename_index_path.write_text("{not json", encoding="utf-8")
        with Engine(cfg, text_embedder=FakeTextEmbedder(), image_embedder=FakeImageEmbedder()) as eng:
            assert len(eng.filename_index) == 0

    def test_embedder_dims_must_match_config(self, tmp_path: Path):
        cfg = make_config(tmp_path, text_dim=32)
        with pytest.raises(ConfigError):
            Engine(cfg, text_embedder=FakeTextEmbedder(), image_embedder=FakeImageEmbedder())

    def test_images_disabled(self, tmp_path: Path):
        cfg = make_config(tmp_path, enable_images=False)
        with Engine(cfg, text_embedder=FakeTextEmbedder(), image_embedder=FakeImageEmbedder()) as eng:
            assert not eng.worker.has_images
            assert not eng.extractors.supports(Path("x.png"))


class TestCli:

    def test_init_writes_loadable_config(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("HF_OFFLINE_MODE", raising=False)
        out = tmp_path / "config.toml"
        result = CliRunner().invoke(app, [
            "init", "--index", str(tmp_path / "idx"), "--root", str(tmp_path), "--out", str(out),
        ])
        assert result.exit_code == 0, result.output
        cfg = EngineConfig.from_toml(out)
        assert cfg.index_dir == (tmp_path / "idx").resolve()
        assert cfg.roots == [tmp_path.resolve()]

    def test_missing_config_is_usage_error(self, tmp_path: Path):
        result = CliRunner().invoke(app, ["stats", "--config", str(tmp_path / "missing.toml")])
        assert result.exit_code != 0
