"""
Core Tree Store Module - Host-side Workspace Storage

This module provides a thread-safe holder for tree snapshots with:
- Atomic swap of a workspace's current snapshot (readers never see a half-applied edit)
- Undo history of previous snapshots
- Labelled snapshots for explicit rollback
- Lifecycle hooks for caching and event propagation

The tree operations themselves are pure; the store is the single place where
a workspace's "current" snapshot changes.

Usage:
    from asset_registry.core.tree_store import TreeStore
    from asset_registry.core.tree import ensure_site

    store = TreeStore()
    store.create("ws-1")
    site_id = store.apply("ws-1", ensure_site, "project")

    saved = store.create_snapshot("ws-1", "before-import")
    # ... make changes ...
    store.restore_snapshot(saved)  # rollback
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from ..errors import ConcurrentModification
from ..models.tree import Snapshot, seed_snapshot
from .tree import repair

logger = logging.getLogger(__name__)


# ============================================================================
# Records
# ============================================================================

@dataclass
class WorkspaceMetadata:
    """Metadata tracked for each workspace.

    Attributes:
        workspace_id: Unique identifier for the workspace
        created_at: Timestamp when the workspace was created
        modified_at: Timestamp of the last swap
        revision: Number of swaps since creation
        tags: User-defined key-value tags
    """
    workspace_id: str
    created_at: datetime
    modified_at: datetime
    revision: int = 0
    tags: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert metadata to dictionary for serialization."""
        return {
            "workspace_id": self.workspace_id,
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat(),
            "revision": self.revision,
            "tags": self.tags,
        }


@dataclass(frozen=True)
class WorkspaceSnapshot:
    """Labelled tree state kept for rollback.

    Tree snapshots are immutable, so the state is held by reference.
    """
    workspace_id: str
    timestamp: datetime
    state: Snapshot
    label: Optional[str] = None


# ============================================================================
# Lifecycle Hooks
# ============================================================================

class LifecycleHook:
    """Base class for workspace lifecycle event handlers.

    Example:
        class LoggingHook(LifecycleHook):
            def on_updated(self, workspace_id, old, new, metadata):
                logger.info(f"Workspace {workspace_id} now has {len(new)} nodes")
    """

    def on_created(self, workspace_id: str, snapshot: Snapshot, metadata: WorkspaceMetadata) -> None:
        """Called after a workspace is created."""
        pass

    def on_updated(self, workspace_id: str, old: Snapshot, new: Snapshot,
                   metadata: WorkspaceMetadata) -> None:
        """Called after a workspace's snapshot is swapped."""
        pass

    def on_deleted(self, workspace_id: str, snapshot: Snapshot, metadata: WorkspaceMetadata) -> None:
        """Called after a workspace is deleted."""
        pass


# ============================================================================
# Store
# ============================================================================

class TreeStore:
    """Thread-safe in-memory store of workspace snapshots."""

    def __init__(self, max_history: int = 50):
        """Initialize the store.

        Args:
            max_history: Number of previous snapshots kept per workspace for undo
        """
        self._current: Dict[str, Snapshot] = {}
        self._metadata: Dict[str, WorkspaceMetadata] = {}
        self._history: Dict[str, Deque[Snapshot]] = {}
        self._snapshots: Dict[str, List[WorkspaceSnapshot]] = {}
        self._hooks: List[LifecycleHook] = []
        self._max_history = max_history
        self._lock = threading.RLock()

    def _dispatch(self, event: str, *args: Any) -> None:
        for hook in list(self._hooks):
            try:
                getattr(hook, event)(*args)
            except Exception as e:
                logger.warning(f"Hook {event} failed: {e}")

    def _swap(self, workspace_id: str, new: Snapshot, record_history: bool = True) -> Snapshot:
        """Replace the current snapshot; caller holds the lock. Returns the old one."""
        old = self._current[workspace_id]
        if record_history:
            self._history[workspace_id].append(old)
        self._current[workspace_id] = new
        metadata = self._metadata[workspace_id]
        metadata.modified_at = datetime.now()
        metadata.revision += 1
        return old

    def create(self, workspace_id: str, snapshot: Optional[Snapshot] = None, **kwargs) -> WorkspaceMetadata:
        """Create a workspace.

        Args:
            workspace_id: Unique identifier
            snapshot: Initial tree, repaired before storing; the starter tree when omitted
            **kwargs: Additional metadata (tags)

        Raises:
            KeyError: If workspace_id already exists
        """
        with self._lock:
            if workspace_id in self._current:
                raise KeyError(f"Workspace {workspace_id} already exists")

            state = repair(snapshot if snapshot is not None else seed_snapshot())
            now = datetime.now()
            metadata = WorkspaceMetadata(
                workspace_id=workspace_id,
                created_at=now,
                modified_at=now,
                tags=kwargs.get('tags', {}),
            )
            self._current[workspace_id] = state
            self._metadata[workspace_id] = metadata
            self._history[workspace_id] = deque(maxlen=self._max_history)
            self._snapshots[workspace_id] = []

            logger.debug(f"Created workspace: {workspace_id} ({len(state)} nodes)")

        self._dispatch("on_created", workspace_id, state, metadata)
        return metadata

    def get(self, workspace_id: str) -> Optional[Snapshot]:
        """Current snapshot of a workspace, or None."""
        with self._lock:
            return self._current.get(workspace_id)

    def require(self, workspace_id: str) -> Snapshot:
        """Current snapshot of a workspace.

        Raises:
            KeyError: If the workspace doesn't exist
        """
        with self._lock:
            if workspace_id not in self._current:
                raise KeyError(f"Workspace {workspace_id} not found")
            return self._current[workspace_id]

    def apply(self, workspace_id: str, operation: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a pure tree operation on the current snapshot and swap in its result.

        ``operation`` is called as ``operation(snapshot, *args, **kwargs)`` and
        returns either a snapshot or a tuple whose first item is the snapshot.
        Exceptions propagate and leave the workspace untouched.

        Returns:
            The operation's remaining return value (a single item is unwrapped),
            or None for operations that only return a snapshot
        """
        with self._lock:
            current = self.require(workspace_id)
            result = operation(current, *args, **kwargs)
            if isinstance(result, tuple):
                new, extra = result[0], result[1:]
                extra = extra[0] if len(extra) == 1 else extra
            else:
                new, extra = result, None

            if new is current:
                return extra
            old = self._swap(workspace_id, new)
            metadata = self._metadata[workspace_id]
            logger.debug(f"Applied {getattr(operation, '__name__', operation)} to {workspace_id}")

        self._dispatch("on_updated", workspace_id, old, new, metadata)
        return extra

    def read(self, workspace_id: str) -> Tuple[Snapshot, int]:
        """Current snapshot together with its revision, for a later ``replace``."""
        with self._lock:
            return self.require(workspace_id), self._metadata[workspace_id].revision

    def replace(
        self,
        workspace_id: str,
        snapshot: Snapshot,
        expected_revision: Optional[int] = None,
    ) -> WorkspaceMetadata:
        """Swap in an externally built snapshot (after repair).

        Args:
            workspace_id: Workspace to update
            snapshot: New tree
            expected_revision: If provided, the swap fails unless the workspace
                is still at this revision

        Raises:
            KeyError: If the workspace doesn't exist
            ConcurrentModification: If expected_revision doesn't match
        """
        new = repair(snapshot)
        with self._lock:
            self.require(workspace_id)
            actual = self._metadata[workspace_id].revision
            if expected_revision is not None and actual != expected_revision:
                raise ConcurrentModification(workspace_id, expected_revision, actual)
            old = self._swap(workspace_id, new)
            metadata = self._metadata[workspace_id]

        self._dispatch("on_updated", workspace_id, old, new, metadata)
        return metadata

    def undo(self, workspace_id: str) -> bool:
        """Return to the snapshot before the last swap.

        Returns:
            True if a previous snapshot was restored, False if history is empty
        """
        with self._lock:
            self.require(workspace_id)
            history = self._history[workspace_id]
            if not history:
                return False
            previous = history.pop()
            old = self._swap(workspace_id, previous, record_history=False)
            metadata = self._metadata[workspace_id]

        self._dispatch("on_updated", workspace_id, old, previous, metadata)
        return True

    def delete(self, workspace_id: str) -> bool:
        """Delete a workspace. Returns False if it was not found."""
        with self._lock:
            if workspace_id not in self._current:
                return False
            state = self._current.pop(workspace_id)
            metadata = self._metadata.pop(workspace_id)
            self._history.pop(workspace_id, None)
            self._snapshots.pop(workspace_id, None)
            logger.debug(f"Deleted workspace: {workspace_id}")

        self._dispatch("on_deleted", workspace_id, state, metadata)
        return True

    def exists(self, workspace_id: str) -> bool:
        with self._lock:
            return workspace_id in self._current

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._current.keys())

    def get_metadata(self, workspace_id: str) -> Optional[WorkspaceMetadata]:
        with self._lock:
            return self._metadata.get(workspace_id)

    def create_snapshot(self, workspace_id: str, label: Optional[str] = None) -> WorkspaceSnapshot:
        """Keep the current state under a label for later rollback."""
        with self._lock:
            saved = WorkspaceSnapshot(
                workspace_id=workspace_id,
                timestamp=datetime.now(),
                state=self.require(workspace_id),
                label=label,
            )
            self._snapshots[workspace_id].append(saved)
            logger.debug(f"Created snapshot for {workspace_id}: {label or 'unlabeled'}")
            return saved

    def restore_snapshot(self, saved: WorkspaceSnapshot) -> None:
        """Swap a workspace back to a saved state.

        Raises:
            KeyError: If the snapshot's workspace doesn't exist
        """
        with self._lock:
            self.require(saved.workspace_id)
            old = self._swap(saved.workspace_id, saved.state)
            metadata = self._metadata[saved.workspace_id]
            logger.debug(f"Restored {saved.workspace_id} to snapshot: {saved.label or saved.timestamp}")

        self._dispatch("on_updated", saved.workspace_id, old, saved.state, metadata)

    def list_snapshots(self, workspace_id: str) -> List[WorkspaceSnapshot]:
        """Saved snapshots of a workspace, oldest first."""
        with self._lock:
            return list(self._snapshots.get(workspace_id, []))

    def add_hook(self, hook: LifecycleHook) -> None:
        with self._lock:
            if hook not in self._hooks:
                self._hooks.append(hook)

    def remove_hook(self, hook: LifecycleHook) -> None:
        with self._lock:
            if hook in self._hooks:
                self._hooks.remove(hook)

    def __contains__(self, workspace_id: str) -> bool:
        return self.exists(workspace_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._current)

    def __iter__(self):
        return iter(self.list_ids())
