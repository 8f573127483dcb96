"""Durable storage for named record collections."""

import copy
import json
from pathlib import Path
from typing import Any, Protocol


class CollectionStorage(Protocol):
    """Stores and retrieves whole collections of JSON-compatible records by key."""

    def load(self, collection: str) -> list[dict[str, Any]]:
        ...

    def save(self, collection: str, records: list[dict[str, Any]]) -> None:
        ...


class JsonFileStorage:
    """One pretty-printed JSON file per collection inside a sandbox directory."""

    def __init__(self, root: Path):
        """Initialize storage.

        Args:
            root: Sandbox directory (created on first write)
        """
        self.root = root

    def path_for(self, collection: str) -> Path:
        return self.root / f"{collection}.json"

    def load(self, collection: str) -> list[dict[str, Any]]:
        """Load a collection.

        Args:
            collection: Collection name

        Returns:
            List of records (empty if the collection was never written)
        """
        file_path = self.path_for(collection)
        if not file_path.exists():
            return []

        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        # Older audit logs were stored as {"entries": [...]}
        if isinstance(data, dict) and "entries" in data:
            data = data["entries"]

        if not isinstance(data, list):
            raise ValueError(f"Collection {collection} is not a JSON list: {file_path}")

        return data

    def save(self, collection: str, records: list[dict[str, Any]]) -> None:
        """Write a collection atomically (temp file + rename).

        Args:
            collection: Collection name
            records: Full list of records
        """
        file_path = self.path_for(collection)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        temp_path = file_path.with_suffix(file_path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
            temp_path.replace(file_path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise


class MemoryStorage:
    """In-process storage; records are deep-copied on the way in and out."""

    def __init__(self):
        self._collections: dict[str, list[dict[str, Any]]] = {}

    def load(self, collection: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._collections.get(collection, []))

    def save(self, collection: str, records: list[dict[str, Any]]) -> None:
        self._collections[collection] = copy.deepcopy(records)
