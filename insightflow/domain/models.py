from datetime import datetime, timezone
from insightflow.extensions import db


def _utcnow():
    return datetime.now(timezone.utc)


class StorageEntry(db.Model):
    """
    One named collection (or the current session) in the durable store.
    The value column always holds the full serialized snapshot, never a delta.
    A NULL value is a tombstone: the key was removed (e.g. logout).
    """
    __tablename__ = 'storage_entries'

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=True)

    # Bumped on every write; the sync poller compares it against what it has seen.
    revision = db.Column(db.Integer, nullable=False, default=0)
    # Execution context that produced this revision
    writer_id = db.Column(db.String(64), nullable=True, index=True)

    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f'<StorageEntry {self.key} rev:{self.revision}>'
