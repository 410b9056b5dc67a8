"""Crash-safe JSON document I/O.

Writes go to a sibling temp file which is fsynced and then os.replace()d
over the target, so a reader sees either the old or the new document,
never a torn one.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def read_json_document(path: Path) -> Any:
    """Read a JSON document.

    Raises:
        FileNotFoundError: If the document does not exist.
        ValueError: If it is not valid JSON.
    """
    return json.loads(path.read_text(encoding="utf-8"))


def write_json_atomic(path: Path, data: Any) -> None:
    """Atomically replace a JSON document (pretty-printed, trailing newline)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
