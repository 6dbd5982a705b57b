"""
File-backed state.

Three JSON documents live under `settings.data_dir`:
  - link mapping:   {payment_link_id | order_code: LinkMappingRecord}
  - webhook log:    [{ts, event, payload}], last 200
  - conversion log: [ConversionEvent], last 1000

Each document is fully rewritten on every update. There is no locking:
two requests writing the same key race and the later write wins.
Unreadable files read as empty; failed writes are logged and dropped.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from paylink.config import get_settings
from paylink.models.records import LinkMappingRecord, utcnow

import structlog

logger = structlog.get_logger()


def _read_json(path: Path, default: Any) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return default
    except OSError as e:
        logger.warning("state_file_unreadable", path=str(path), error=str(e))
        return default

    if not raw.strip():
        return default
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.warning("state_file_corrupt", path=str(path), error=str(e))
        return default


def _write_json(path: Path, document: Any) -> bool:
    """Atomic whole-file replace. Returns False (and logs) on failure."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except (OSError, TypeError, ValueError) as e:
        logger.warning("state_file_write_failed", path=str(path), error=str(e))
        return False
    return True


# ---------------------------------------------------------------------------
# Link mapping
# ---------------------------------------------------------------------------

class LinkMappingStore(Protocol):
    def get(self, key: str) -> LinkMappingRecord | None: ...

    def put(self, key: str, record: LinkMappingRecord) -> None: ...

    def all(self) -> dict[str, LinkMappingRecord]: ...


class FileLinkMappingStore:
    """LinkMappingStore over a single JSON object file."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        document = _read_json(self.path, {})
        if not isinstance(document, dict):
            logger.warning("link_store_corrupt", path=str(self.path), reason="not_an_object")
            return {}
        return document

    def all(self) -> dict[str, LinkMappingRecord]:
        records: dict[str, LinkMappingRecord] = {}
        for key, raw in self._load().items():
            try:
                records[key] = LinkMappingRecord.model_validate(raw)
            except ValidationError:
                logger.warning("link_store_record_invalid", path=str(self.path), key=key)
        return records

    def get(self, key: str) -> LinkMappingRecord | None:
        raw = self._load().get(key)
        if raw is None:
            return None
        try:
            return LinkMappingRecord.model_validate(raw)
        except ValidationError:
            logger.warning("link_store_record_invalid", path=str(self.path), key=key)
            return None

    def put(self, key: str, record: LinkMappingRecord) -> None:
        document = self._load()
        document[key] = record.model_dump(mode="json")
        if _write_json(self.path, document):
            logger.info("link_mapping_saved", key=key, order_code=record.order_code)


# ---------------------------------------------------------------------------
# Capped append-only logs
# ---------------------------------------------------------------------------

class CappedJsonLog:
    """JSON array file keeping only the most recent `limit` entries."""

    def __init__(self, path: Path | str, limit: int):
        self.path = Path(path)
        self.limit = limit

    def entries(self) -> list[Any]:
        document = _read_json(self.path, [])
        if not isinstance(document, list):
            logger.warning("capped_log_corrupt", path=str(self.path), reason="not_a_list")
            return []
        return document

    def append(self, entry: Any) -> None:
        entries = self.entries()
        entries.append(entry)
        _write_json(self.path, entries[-self.limit:])


def webhook_entry(event: str, payload: Any) -> dict[str, Any]:
    return {"ts": utcnow().isoformat(), "event": event, "payload": payload}


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

# Lazy initialization: stores are bound to settings on first use,
# not at import time, so tests can point data_dir elsewhere first.
_link_store: FileLinkMappingStore | None = None
_webhook_log: CappedJsonLog | None = None
_conversion_log: CappedJsonLog | None = None


def get_link_store() -> LinkMappingStore:
    global _link_store
    if _link_store is None:
        settings = get_settings()
        _link_store = FileLinkMappingStore(settings.data_path(settings.link_mapping_file))
    return _link_store


def get_webhook_log() -> CappedJsonLog:
    global _webhook_log
    if _webhook_log is None:
        settings = get_settings()
        _webhook_log = CappedJsonLog(
            settings.data_path(settings.webhook_log_file),
            settings.webhook_log_limit,
        )
    return _webhook_log


def get_conversion_log() -> CappedJsonLog:
    global _conversion_log
    if _conversion_log is None:
        settings = get_settings()
        _conversion_log = CappedJsonLog(
            settings.data_path(settings.conversion_log_file),
            settings.conversion_log_limit,
        )
    return _conversion_log
