"""Command interface consumed by a UI shell or the CLI.

Each command takes the Engine and a params dict and returns a JSON-ready
dict. Store, schema and query errors propagate to the caller, except for
clear_index which reports failure in its payload.
"""
from __future__ import annotations

from typing import Any, Callable

from .engine import Engine
from .errors import QueryError, StoreError
from .models import SearchMode

Command = Callable[[Engine, dict[str, Any]], dict[str, Any]]


def _require(params: dict[str, Any], key: str) -> Any:
    if key not in params or params[key] is None:
        raise QueryError(f"Missing required parameter: {key}")
    return params[key]


def _opt_int(params: dict[str, Any], key: str) -> int | None:
    v = params.get(key)
    return None if v is None else int(v)


def _opt_float(params: dict[str, Any], key: str) -> float | None:
    v = params.get(key)
    return None if v is None else float(v)


def _categories(params: dict[str, Any]) -> list[str] | None:
    cats = params.get("categories")
    if cats is None:
        return None
    if isinstance(cats, str):
        return [c for c in (s.strip() for s in cats.split(",")) if c]
    return list(cats)


def index_folder(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    """Index every eligible file under a folder.

    Params:
        path: Folder to index
    """
    stats = engine.coordinator.index_folder(_require(params, "path"))
    return stats.to_dict()


def get_indexing_stats(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    return engine.coordinator.stats.to_dict()


def clear_index(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    try:
        engine.store.clear()
    except StoreError as e:
        return {"success": False, "message": str(e)}
    return {"success": True, "message": "Vector index cleared"}


def scan_directory_for_filenames(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    """Add every file under `path` to the filename index without embedding."""
    added, errors = engine.coordinator.scan_filenames(_require(params, "path"))
    return {"files_added": added, "errors": errors}


def clear_filename_index(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    engine.filename_index.clear()
    engine.save_filename_index()
    return {}


def semantic_search(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    """Params: query, limit?, min_score?, categories?"""
    resp = engine.search_engine.search(
        params.get("query", ""),
        mode=SearchMode.SEMANTIC,
        limit=_opt_int(params, "limit"),
        min_score=_opt_float(params, "min_score"),
        categories=_categories(params),
    )
    return resp.to_dict()


def filename_search(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    """Params: query, max_distance?, categories?, limit?"""
    resp = engine.search_engine.search(
        params.get("query", ""),
        mode=SearchMode.FILENAME,
        limit=_opt_int(params, "limit"),
        categories=_categories(params),
        max_distance=_opt_int(params, "max_distance"),
    )
    return resp.to_dict()


def combined_search(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    """Params: query, limit?, min_score?, categories?, max_distance?"""
    resp = engine.search_engine.search(
        params.get("query", ""),
        mode=SearchMode.COMBINED,
        limit=_opt_int(params, "limit"),
        min_score=_opt_float(params, "min_score"),
        categories=_categories(params),
        max_distance=_opt_int(params, "max_distance"),
    )
    return resp.to_dict()


def get_vector_db_stats(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    return engine.store.stats()


def get_filename_index_stats(engine: Engine, params: dict[str, Any]) -> dict[str, Any]:
    return engine.filename_index.stats()


COMMANDS: dict[str, Command] = {
    "index_folder": index_folder,
    "get_indexing_stats": get_indexing_stats,
    "clear_index": clear_index,
    "scan_directory_for_filenames": scan_directory_for_filenames,
    "clear_filename_index": clear_filename_index,
    "semantic_search": semantic_search,
    "filename_search": filename_search,
    "combined_search": combined_search,
    "get_vector_db_stats": get_vector_db_stats,
    "get_filename_index_stats": get_filename_index_stats,
}


def dispatch(engine: Engine, name: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    try:
        fn = COMMANDS[name]
    except KeyError as e:
        raise QueryError(f"Unknown command: {name}") from e
    return fn(engine, params or {})
