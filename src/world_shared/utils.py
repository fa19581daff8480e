"""Crash-safe file helpers for world state and caches."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any


def _atomic_write_text(path: Path, text: str) -> None:
    """Replace *path* with *text* through a sibling ``.tmp`` file.

    The temporary file is fsynced before ``os.replace`` so a crash leaves
    either the previous content or the new one, never a truncated file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_write_json(path: Path | str, data: Any) -> None:
    """Write *data* as indented, key-sorted JSON.

    Args:
        path: Target file path.
        data: JSON-serialisable data to write.
    """
    _atomic_write_text(Path(path), json.dumps(data, indent=2, sort_keys=True, default=str))


def load_json(path: Path | str) -> dict | None:
    """Load a JSON object.

    Returns:
        The parsed object, or None if the file is missing, unreadable or
        does not hold an object.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return None
    return data if isinstance(data, dict) else None


def ensure_dir(path: Path | str) -> Path:
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def read_lines(path: Path | str) -> list[str]:
    """Return the non-empty lines of a text file, or [] when it is missing."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    return [line for line in text.splitlines() if line.strip()]


def atomic_write_lines(path: Path | str, lines: list[str]) -> None:
    """Write one line per entry, with a trailing newline when non-empty."""
    _atomic_write_text(Path(path), "".join(f"{line}\n" for line in lines))
