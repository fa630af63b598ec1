"""Atomic JSON persistence for kernel state files.

Readers either see the previous file or the new one, never a partial write:
content goes to a temporary file in the same directory, is fsynced, and is
then renamed over the target.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def atomic_write_json(path: Path, payload: Any) -> None:
    """Write ``payload`` as pretty-printed JSON to ``path`` atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    ) as handle:
        tmp_path = Path(handle.name)
        try:
            handle.write(json.dumps(payload, indent=2))
            handle.flush()
            os.fsync(handle.fileno())
        except OSError:
            logger.error("Failed to write state file %s", path)
            handle.close()
            tmp_path.unlink(missing_ok=True)
            raise
    tmp_path.replace(path)


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON state file, returning ``default`` when it does not exist."""
    if not path.exists():
        return default
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)
