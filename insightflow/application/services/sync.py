import logging
import threading
from typing import Callable, Dict, List

from pydantic import ValidationError

from insightflow.application.services.storage import ChangeNotification, DurableStore, StorageKey
from insightflow.domain.schemas import AnalysisList, FormList, ResponseList

logger = logging.getLogger(__name__)


class BroadcastChannel:
    """
    In-process pub/sub for storage changes.
    A notification is delivered to every subscriber except the context that
    produced it, so a context never re-applies its own writes.
    """

    def __init__(self):
        self._subscribers: Dict[str, Callable[[ChangeNotification], None]] = {}
        self._lock = threading.Lock()

    def subscribe(self, context_id: str, callback: Callable[[ChangeNotification], None]):
        with self._lock:
            self._subscribers[context_id] = callback

    def unsubscribe(self, context_id: str):
        with self._lock:
            self._subscribers.pop(context_id, None)

    def publish(self, notification: ChangeNotification):
        with self._lock:
            targets = [
                callback for context_id, callback in self._subscribers.items()
                if context_id != notification.origin
            ]
        for callback in targets:
            callback(notification)


class StoragePoller:
    """
    Cross-process transport: compares storage_entries revisions with the last
    ones this context has seen. Rows last written by this context are
    acknowledged but never reported.
    """

    def __init__(self, store: DurableStore):
        self.store = store
        self._seen: Dict[str, int] = {}

    def prime(self):
        """Marks everything currently stored as already seen (call after hydration)."""
        self._seen = self.store.revisions()

    def is_newer(self, key: str, revision: int) -> bool:
        return revision > self._seen.get(key, 0)

    def acknowledge(self, key: str, revision: int):
        if revision > self._seen.get(key, 0):
            self._seen[key] = revision

    def poll(self) -> List[ChangeNotification]:
        notifications = []
        for entry in self.store.changed_since(self._seen):
            self._seen[entry.key] = entry.revision
            if entry.writer_id == self.store.context_id:
                continue
            notifications.append(ChangeNotification(
                key=entry.key, raw_value=entry.value, origin=entry.writer_id, revision=entry.revision
            ))
        return notifications


class SyncListener:
    """
    Reconciles one AppState with changes made by other contexts.
    Shared collections are replaced wholesale (last writer wins, no merge);
    a removed session logs this context out.
    """

    REPLACEABLE = {
        StorageKey.RESPONSES: ('responses', ResponseList),
        StorageKey.FORMS: ('forms', FormList),
        StorageKey.ANALYSES: ('analyses', AnalysisList),
    }

    def __init__(self, state, poller: StoragePoller = None):
        self.state = state
        self.poller = poller

    def handle(self, notification: ChangeNotification, check_revision: bool = True) -> bool:
        """
        Applies one notification. Returns True when local state changed.
        The revision check and the replacement happen under the receiving
        context's lock, so a poll cannot slip in between them.
        """
        with self.state.exclusive():
            return self._apply(notification, check_revision)

    def _apply(self, notification: ChangeNotification, check_revision: bool) -> bool:
        if notification.origin == self.state.context_id:
            return False

        # A broadcast already applied must not be replayed by the poller, and
        # a late broadcast must not overwrite a newer polled revision.
        if check_revision and self.poller is not None and notification.revision:
            if not self.poller.is_newer(notification.key, notification.revision):
                return False
            self.poller.acknowledge(notification.key, notification.revision)

        if notification.key == StorageKey.SESSION:
            if not notification.raw_value and self.state.current_user is not None:
                logger.info("[Sync] Session removed by another context. Logging out locally.")
                self.state.clear_session_locally()
                return True
            return False

        target = self.REPLACEABLE.get(notification.key)
        if target is None or not notification.raw_value:
            return False

        attr, adapter = target
        try:
            items = adapter.validate_json(notification.raw_value)
        except ValidationError as e:
            logger.warning(f"[Sync] Ignoring unreadable update for '{notification.key}': {e}")
            return False

        self.state.replace_collection(attr, items)
        logger.info(f"[Sync] Replaced '{attr}' from context {notification.origin} ({len(items)} items).")
        return True

    def poll(self) -> int:
        """Pulls pending changes through the poller. Returns how many were applied."""
        if self.poller is None:
            return 0
        applied = 0
        for notification in self.poller.poll():
            if self.handle(notification, check_revision=False):
                applied += 1
        return applied
