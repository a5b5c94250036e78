"""Archive terminal CompilationRecords to a lightweight JSON-lines log."""

import json
import logging
import threading
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
)

from agentify.core.record import CompilationRecord

logger = logging.getLogger(__name__)

ARCHIVE_FILE = "compilations.jsonl"

_write_lock = threading.Lock()


def save_record(record: CompilationRecord, log_dir: Path) -> Path:
    """
    Append *record* to ``<log_dir>/compilations.jsonl`` and return the archive path.

    Concurrent compiles share the archive, so writes are serialized.
    """
    path = Path(log_dir) / ARCHIVE_FILE
    line = json.dumps(record.to_dict(include_events=False)) + "\n"
    with _write_lock:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(line)
    logger.debug("Archived compilation %s to %s", record.request_id, path)
    return path


def load_records(log_dir: Path) -> List[Dict[str, Any]]:
    """Read every archived record, oldest first."""
    path = Path(log_dir) / ARCHIVE_FILE
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]
