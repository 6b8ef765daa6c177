"""Bounded undo/redo history of transaction log edits.

The history belongs to whoever drives the ledger (a CLI session, a
request-scoped facade); it is not persisted. Entries hold row snapshots,
so undoing a rollback re-inserts the exact transaction.
"""

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 50


@dataclass
class UndoAction:
    kind: Literal["create", "rollback"]
    snapshot: dict[str, Any]
    description: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def transaction_id(self) -> str:
        return self.snapshot["id"]


class UndoHistory:
    """Two stacks; the undo stack drops its oldest entry past ``max_entries``."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._undo: deque[UndoAction] = deque(maxlen=max_entries)
        self._redo: list[UndoAction] = []

    def record(self, kind: Literal["create", "rollback"], snapshot: dict[str, Any]) -> UndoAction:
        verb = "Created" if kind == "create" else "Rolled back"
        action = UndoAction(
            kind=kind,
            snapshot=snapshot,
            description=f"{verb} transaction: {snapshot.get('description') or snapshot.get('type')}",
        )
        self._undo.append(action)
        self._redo.clear()
        return action

    def pop_undo(self) -> Optional[UndoAction]:
        return self._undo.pop() if self._undo else None

    def pop_redo(self) -> Optional[UndoAction]:
        return self._redo.pop() if self._redo else None

    def push_undo(self, action: UndoAction) -> None:
        """Return an action to the undo stack without clearing redo."""
        self._undo.append(action)

    def push_redo(self, action: UndoAction) -> None:
        self._redo.append(action)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    def __len__(self) -> int:
        return len(self._undo)
