from __future__ import annotations

from pathlib import Path

from .models import Category

# Directory names never descended into during scans or reported by the watcher.
EXCLUDED_DIRS = frozenset({
    "node_modules",
    "__pycache__",
    ".git",
    ".cache",
    ".vscode",
    ".github",
    ".idea",
})

# Bundle-like directory suffixes (macOS) that should be treated as opaque.
EXCLUDED_DIR_SUFFIXES = (".app", ".bundle", ".framework", ".kext", ".plugin")

CATEGORY_EXTENSIONS: dict[Category, frozenset[str]] = {
    Category.DOCUMENT: frozenset({
        "pdf", "doc", "docx", "txt", "rtf", "odt", "md", "markdown", "rst", "csv",
        "xls", "xlsx", "ppt", "pptx", "log",
    }),
    Category.IMAGE: frozenset({
        "jpg", "jpeg", "png", "gif", "bmp", "tiff", "webp", "svg", "ico", "heic",
    }),
    Category.VIDEO: frozenset({
        "mp4", "mkv", "avi", "mov", "wmv", "flv", "webm", "m4v", "mpg", "mpeg",
    }),
    Category.AUDIO: frozenset({"mp3", "wav", "ogg", "flac", "aac", "m4a", "wma"}),
    Category.ARCHIVE: frozenset({"zip", "rar", "7z", "tar", "gz", "bz2", "xz", "iso"}),
    Category.CODE: frozenset({
        "py", "js", "jsx", "ts", "tsx", "html", "css", "scss", "json", "rs", "go",
        "java", "cpp", "c", "h", "cs", "php", "rb", "yaml", "yml", "toml", "ini",
        "sh", "sql",
    }),
}

_EXT_TO_CATEGORY: dict[str, Category] = {
    ext: cat for cat, exts in CATEGORY_EXTENSIONS.items() for ext in exts
}

RECOGNIZED_EXTENSIONS = frozenset(_EXT_TO_CATEGORY)


def extension_of(path: str | Path) -> str:
    return Path(path).suffix.lower().lstrip(".")


def categorize(path: str | Path) -> Category:
    return _EXT_TO_CATEGORY.get(extension_of(path), Category.OTHER)


def normalize_path(path: str | Path) -> str:
    """Absolute, resolved, forward-slash path used as the key in every store."""
    return str(Path(path).expanduser().resolve()).replace("\\", "/")


def is_hidden(path: str | Path) -> bool:
    return Path(path).name.startswith(".")


def is_excluded_dir(name: str) -> bool:
    return name in EXCLUDED_DIRS or name.startswith(".") or name.endswith(EXCLUDED_DIR_SUFFIXES)


def is_relevant_file(path: str | Path, root: Path | None = None) -> bool:
    """Allow-list check shared by the watcher and the reconciler.

    Hidden files, files under hidden/excluded directories (relative to `root`
    when given) and unrecognized extensions are rejected.
    """
    p = Path(path)
    if is_hidden(p):
        return False
    parts: tuple[str, ...] = ()
    if root is not None:
        try:
            parts = p.relative_to(root).parts[:-1]
        except ValueError:
            pass
    if any(is_excluded_dir(part) for part in parts):
        return False
    return extension_of(p) in RECOGNIZED_EXTENSIONS
