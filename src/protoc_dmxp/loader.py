from __future__ import annotations

from pathlib import Path


class SchemaLoadError(OSError):
    """A schema could not be read, or generated output could not be written."""


def load_schema(file_path: str) -> str:
    """Return the full UTF-8 text of a schema file."""
    try:
        return Path(file_path).read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise SchemaLoadError(f"Schema file not found: {file_path}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise SchemaLoadError(f"Cannot read schema file {file_path}: {e}") from e


def write_output(file_path: str, text: str) -> str:
    """Write generated text, creating parent directories. Returns the path."""
    path = Path(file_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise SchemaLoadError(f"Cannot write {file_path}: {e}") from e
    return str(path)
