import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from insightflow.extensions import db
from insightflow.domain.models import StorageEntry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class StorageKey:
    """Durable store keys, one per logical collection plus the session."""
    INSTITUTIONS = 'if_institutions'
    DEPARTMENTS = 'if_depts'
    FORMS = 'if_forms'
    RESPONSES = 'if_responses'
    ANALYSES = 'if_analyses'
    SESSION = 'if_user'

    ALL = (INSTITUTIONS, DEPARTMENTS, FORMS, RESPONSES, ANALYSES, SESSION)


class LoadStatus(str, Enum):
    MISSING = 'missing'
    LOADED = 'loaded'
    CORRUPT = 'corrupt'


@dataclass(frozen=True)
class LoadResult:
    """Outcome of reading one key. value is only set when loaded."""
    status: LoadStatus
    value: Any = None
    error: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self.status == LoadStatus.LOADED

    @property
    def is_corrupt(self) -> bool:
        return self.status == LoadStatus.CORRUPT


@dataclass(frozen=True)
class ChangeNotification:
    """'Key K now holds raw_value' (None when the key was removed)."""
    key: str
    raw_value: Optional[str]
    origin: Optional[str] = None
    revision: int = 0


class DurableStore:
    """
    Key-value persistence of named collections on top of the storage_entries table.
    Each save writes the full snapshot for one key; there is no grouping
    across keys, so two keys can briefly disagree after a crash.

    When a channel is attached, every committed write is also published on it
    so other contexts in the same process learn about it. Inside a
    deferred_publish() block the notifications are held back until the block
    exits, so callers can publish only after releasing their own locks.
    """

    def __init__(self, context_id: str, channel=None):
        self.context_id = context_id
        self.channel = channel
        self._held = threading.local()

    # --- Reading ---

    def read_raw(self, key: str) -> Optional[str]:
        entry = db.session.get(StorageEntry, key)
        if entry is None:
            return None
        return entry.value

    def try_load(self, key: str, adapter: Optional[TypeAdapter] = None) -> LoadResult:
        """
        Deserializes the value stored under key without hiding corruption.
        An adapter validates the decoded JSON against a schema as well.
        """
        raw = self.read_raw(key)
        if not raw:
            return LoadResult(status=LoadStatus.MISSING)
        try:
            value = adapter.validate_json(raw) if adapter is not None else json.loads(raw)
        except (ValueError, ValidationError) as e:
            return LoadResult(status=LoadStatus.CORRUPT, error=str(e))
        return LoadResult(status=LoadStatus.LOADED, value=value)

    def load(self, key: str, default: Any = None, adapter: Optional[TypeAdapter] = None) -> Any:
        """Like try_load, but falls back to default when missing or corrupt."""
        result = self.try_load(key, adapter)
        if result.is_loaded:
            return result.value
        if result.is_corrupt:
            logger.warning(f"[Store] Snapshot for '{key}' is unreadable, using default. ({result.error})")
        return default

    # --- Writing ---

    def save(self, key: str, value: Any, adapter: Optional[TypeAdapter] = None) -> int:
        """Serializes value and persists it under key. Returns the new revision."""
        if adapter is not None:
            raw = adapter.dump_json(value, by_alias=True, exclude_none=True).decode('utf-8')
        else:
            raw = json.dumps(value)
        return self._write(key, raw)

    def remove(self, key: str) -> int:
        """Leaves a tombstone so pollers in other contexts see the removal."""
        return self._write(key, None)

    def _write(self, key: str, raw: Optional[str]) -> int:
        try:
            entry = db.session.get(StorageEntry, key)
            if entry is None:
                entry = StorageEntry(key=key, revision=0)
                db.session.add(entry)

            entry.value = raw
            entry.revision = (entry.revision or 0) + 1
            entry.writer_id = self.context_id
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"[Store] Failed to persist '{key}': {e}")
            raise

        self.publish(ChangeNotification(key=key, raw_value=raw, origin=self.context_id, revision=entry.revision))
        return entry.revision

    # --- Notifications ---

    def publish(self, notification: ChangeNotification):
        """Sends notification on the channel, or holds it while a deferred block is open."""
        if self.channel is None:
            return
        pending = getattr(self._held, "pending", None)
        if pending is not None:
            pending.append(notification)
            return
        self.channel.publish(notification)

    @contextmanager
    def deferred_publish(self):
        """
        Holds back notifications raised by this thread until the outermost
        block exits. Writes that committed are published even if the block
        raises afterwards.
        """
        if getattr(self._held, "pending", None) is not None:
            yield
            return

        self._held.pending = []
        try:
            yield
        finally:
            pending, self._held.pending = self._held.pending, None
            for notification in pending:
                self.channel.publish(notification)

    # --- Revisions (used by the sync poller) ---

    def revisions(self) -> dict:
        rows = db.session.query(StorageEntry.key, StorageEntry.revision).all()
        return {row.key: row.revision for row in rows}

    def changed_since(self, seen: dict) -> list:
        """Entries whose revision is newer than the one recorded in seen."""
        # Pollers in other contexts may have committed since our last read.
        db.session.expire_all()
        entries = db.session.query(StorageEntry).order_by(StorageEntry.updated_at).all()
        return [e for e in entries if e.revision > seen.get(e.key, 0)]
