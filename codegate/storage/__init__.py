"""Generation Storage - Persistence, reconciliation and the quiz API."""

from .quiz_api import QuizApiClient, QuizApiError
from .reconciler import SessionReconciler, snapshot_hash
from .snapshot_store import HttpSnapshotStore, KVSnapshotStore, SnapshotStore

__all__ = [
    "QuizApiClient",
    "QuizApiError",
    "SessionReconciler",
    "snapshot_hash",
    "HttpSnapshotStore",
    "KVSnapshotStore",
    "SnapshotStore",
]
