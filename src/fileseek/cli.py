from __future__ import annotations

# Suppress harmless multiprocessing resource tracker warnings (common on macOS)
import warnings
warnings.filterwarnings("ignore", message="resource_tracker: There appear to be.*leaked semaphore")

from pathlib import Path
from typing import Optional
import json
import logging
import time

import typer

from . import commands
from .config import EngineConfig
from .engine import Engine
from .errors import FileSeekError

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _engine(config: str, log_level: Optional[str] = None) -> Engine:
    try:
        cfg = EngineConfig.from_toml(config)
    except FileSeekError as e:
        raise typer.BadParameter(str(e)) from e
    _setup_logging(log_level or cfg.log_level)
    return Engine(cfg)


def _echo(payload: dict) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _run(config: str, log_level: Optional[str], name: str, params: dict) -> None:
    engine = _engine(config, log_level)
    try:
        _echo(commands.dispatch(engine, name, params))
    except FileSeekError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        engine.close()


@app.command()
def init(index: str = typer.Option(..., help="Index directory"),
         root: list[str] = typer.Option([], help="Folder to index/watch (repeatable)"),
         out: str = typer.Option("config.toml", help="Write example config to this path")):
    """Write a starter config.toml."""
    outp = Path(out)
    roots = ", ".join(json.dumps(r) for r in root)
    outp.write_text(f"""[index]
dir = {json.dumps(index)}
roots = [{roots}]
ignore = ["**/~$*", "**/*.tmp"]
extraction_workers = 4
debounce_ms = 300
max_text_chars = 100000

[chunking]
min_chars = 500
max_chars = 1500
max_chunks = 100

[embeddings]
text_model = "BAAI/bge-small-en-v1.5"
image_model = "clip-ViT-B-32"
device = "cpu"
batch_size = 32
text_dim = 384
image_dim = 512
enable_images = true
# Set to true to use cached models only (no HuggingFace downloads)
# Can also be controlled via HF_OFFLINE_MODE environment variable
offline_mode = false
timeout_s = 60
max_retries = 2
backoff_ms = 200
queue_size = 8
chunk_failure_threshold = 0.25

[search]
limit = 20
min_score = 0.2
max_distance = 2
cross_modal = true

[logging]
level = "INFO"
""", encoding="utf-8")
    typer.echo(f"Wrote {outp}")


@app.command()
def index(path: Optional[str] = typer.Argument(None, help="Folder to index (default: configured roots)"),
          config: str = typer.Option("config.toml"),
          log_level: Optional[str] = typer.Option(None, help="Override [logging] level")):
    """Index a folder (or every configured root)."""
    engine = _engine(config, log_level)
    try:
        targets = [path] if path else [str(r) for r in engine.cfg.roots]
        if not targets:
            raise typer.BadParameter("No folder given and no [index].roots configured")
        for t in targets:
            _echo(commands.dispatch(engine, "index_folder", {"path": t}))
    except FileSeekError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        engine.close()


@app.command()
def watch(paths: Optional[list[str]] = typer.Argument(None, help="Folders to watch (default: configured roots)"),
          config: str = typer.Option("config.toml"),
          initial_scan: bool = typer.Option(True, help="Index roots before watching"),
          log_level: Optional[str] = typer.Option(None, help="Override [logging] level")):
    """Watch folders and keep the index in sync until interrupted."""
    engine = _engine(config, log_level)
    roots = paths or [str(r) for r in engine.cfg.roots]
    if not roots:
        engine.close()
        raise typer.BadParameter("No folder given and no [index].roots configured")
    try:
        if initial_scan:
            for r in roots:
                stats = engine.coordinator.index_folder(r)
                typer.echo(f"Initial scan of {r}: {stats.indexed} indexed, {stats.skipped} skipped, {stats.failed} failed")
        engine.coordinator.watch(roots)
        typer.echo(f"Watching {', '.join(roots)} (Ctrl+C to stop)")
        while engine.coordinator.watching:
            time.sleep(0.5)
    except FileSeekError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    except KeyboardInterrupt:
        typer.echo("Stopping...")
    finally:
        engine.close()


@app.command()
def search(q: str,
           mode: str = typer.Option("semantic", help="semantic | filename | combined"),
           limit: Optional[int] = typer.Option(None),
           min_score: Optional[float] = typer.Option(None),
           max_distance: Optional[int] = typer.Option(None),
           category: Optional[list[str]] = typer.Option(None, help="Restrict to categories (repeatable)"),
           config: str = typer.Option("config.toml"),
           log_level: Optional[str] = typer.Option(None)):
    """Search the index."""
    name = {
        "semantic": "semantic_search",
        "filename": "filename_search",
        "combined": "combined_search",
    }.get(mode.lower())
    if name is None:
        raise typer.BadParameter(f"Unknown mode: {mode}")
    params = {
        "query": q,
        "limit": limit,
        "min_score": min_score,
        "max_distance": max_distance,
        "categories": category or None,
    }
    _run(config, log_level, name, params)


@app.command(name="filename-search")
def filename_search(q: str,
                    max_distance: Optional[int] = typer.Option(None),
                    limit: Optional[int] = typer.Option(None),
                    category: Optional[list[str]] = typer.Option(None),
                    config: str = typer.Option("config.toml"),
                    log_level: Optional[str] = typer.Option(None)):
    """Approximate filename search."""
    params = {"query": q, "max_distance": max_distance, "limit": limit, "categories": category or None}
    _run(config, log_level, "filename_search", params)


@app.command(name="scan-filenames")
def scan_filenames(path: str,
                   config: str = typer.Option("config.toml"),
                   log_level: Optional[str] = typer.Option(None)):
    """Add files under a folder to the filename index only."""
    _run(config, log_level, "scan_directory_for_filenames", {"path": path})


@app.command()
def stats(config: str = typer.Option("config.toml"),
          log_level: Optional[str] = typer.Option(None)):
    """Show vector and filename index statistics."""
    engine = _engine(config, log_level)
    try:
        _echo({
            "vector_db": commands.dispatch(engine, "get_vector_db_stats"),
            "filename_index": commands.dispatch(engine, "get_filename_index_stats"),
        })
    finally:
        engine.close()


@app.command()
def clear(config: str = typer.Option("config.toml"),
          log_level: Optional[str] = typer.Option(None)):
    """Remove every vector from the index."""
    _run(config, log_level, "clear_index", {})


@app.command(name="clear-filenames")
def clear_filenames(config: str = typer.Option("config.toml"),
                    log_level: Optional[str] = typer.Option(None)):
    """Empty the filename index."""
    _run(config, log_level, "clear_filename_index", {})


if __name__ == "__main__":
    app()
