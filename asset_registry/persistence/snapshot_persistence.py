"""File persistence for tree snapshots."""

import json
import logging
from pathlib import Path
from typing import Any, Union

from ..core.tree import repair
from ..errors import FormatError
from ..models.tree import Snapshot, snapshot_from_dict, snapshot_to_dict

logger = logging.getLogger(__name__)


def canonical_json_dump(data: Any, file_path: Path, **kwargs) -> None:
    """Write JSON with sorted keys for deterministic output.

    Args:
        data: Data to serialize
        file_path: Path to write to
        **kwargs: Additional arguments passed to json.dump
    """
    with open(file_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True, ensure_ascii=False, **kwargs)


class SnapshotPersistence:
    """Loads and saves whole tree snapshots as JSON documents.

    Saved files use the workspace's camelCase node layout, keyed by node id.
    Every load runs ``repair`` before the snapshot is handed out.
    """

    def save(self, snapshot: Snapshot, path: Union[str, Path]) -> Path:
        """Save a snapshot.

        Args:
            snapshot: Tree snapshot
            path: Target file; parent directories are created

        Returns:
            The written path
        """
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        canonical_json_dump(snapshot_to_dict(snapshot), file_path)
        logger.info(f"Saved {len(snapshot)} nodes to {file_path}")
        return file_path

    def load(self, path: Union[str, Path]) -> Snapshot:
        """Load and repair a snapshot.

        Raises:
            FileNotFoundError: If the file does not exist
            FormatError: If the file is not a valid snapshot document
        """
        file_path = Path(path)
        with open(file_path, "r", encoding="utf-8") as f:
            try:
                raw = json.load(f)
            except json.JSONDecodeError as e:
                raise FormatError(f"Invalid JSON in {file_path}: {e}") from e

        snapshot = repair(snapshot_from_dict(raw))
        logger.info(f"Loaded {len(snapshot)} nodes from {file_path}")
        return snapshot
