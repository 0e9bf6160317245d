"""Whole-document file I/O with consistent encoding (UTF-8)."""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any

PathLike = Path | str


def _as_path(path: PathLike) -> Path:
    return path if isinstance(path, Path) else Path(path)


def exists(path: PathLike) -> bool:
    return _as_path(path).is_file()


def read_text(path: PathLike, errors: str = "strict", **kwargs: Any) -> str:
    """Read path as text with UTF-8 encoding. Forwards extra kwargs to Path.read_text."""
    return _as_path(path).read_text(encoding="utf-8", errors=errors, **kwargs)


def write_text(path: PathLike, text: str, **kwargs: Any) -> None:
    """Write text to path with UTF-8 encoding, creating parent directories."""
    p = _as_path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8", **kwargs)


def read_json(path: PathLike) -> Any:
    """Parse the whole file at *path* as JSON."""
    return json.loads(read_text(path))


def write_json(path: PathLike, data: Any) -> None:
    """Serialize *data* and replace the whole file at *path*.

    The document is written to a sibling temp file first and then moved into
    place, so a crash mid-write never leaves half a document behind.
    """
    p = _as_path(path)
    tmp = p.with_name(p.name + ".tmp")
    write_text(tmp, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
    tmp.replace(p)


def copy_file(src: PathLike, dst: PathLike) -> None:
    d = _as_path(dst)
    d.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(_as_path(src), d)
