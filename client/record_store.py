# client/record_store.py
import copy
import threading
from typing import Any, Dict, List, Optional

from client.errors import StorageError
from client.storage import dump_json, load_json

# Durable keys, one per collection
COLLECTION_KEYS = ("patients", "consultations", "medicalRecords", "imageAnalyses", "analytics")


class RecordStore:
    """
    Named collections of JSON records kept in durable key-value storage.

    Each collection is one serialized {identifier: record} mapping, so every
    write reads, mutates and rewrites the whole mapping. The lock makes that
    cycle atomic within this process; separate processes sharing the same
    storage are last-write-wins.
    """

    def __init__(self, storage):
        self.storage = storage
        self._lock = threading.RLock()

    def _load(self, collection: str) -> Dict[str, Dict[str, Any]]:
        rows = load_json(self.storage, collection, {})
        if not isinstance(rows, dict):
            raise StorageError(f"Collection '{collection}' is not a mapping")
        return rows

    def _save(self, collection: str, rows: Dict[str, Dict[str, Any]]) -> None:
        dump_json(self.storage, collection, rows)

    def put(self, collection: str, record_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Inserts or fully replaces the record at `record_id`."""
        with self._lock:
            rows = self._load(collection)
            rows[str(record_id)] = copy.deepcopy(record)
            self._save(collection, rows)
            return copy.deepcopy(rows[str(record_id)])

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._load(collection).get(str(record_id))

    def patch(self, collection: str, record_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Shallow-merges `fields` onto an existing record. Returns None if it does not exist."""
        with self._lock:
            rows = self._load(collection)
            if str(record_id) not in rows:
                return None
            rows[str(record_id)] = {**rows[str(record_id)], **copy.deepcopy(fields)}
            self._save(collection, rows)
            return copy.deepcopy(rows[str(record_id)])

    def query_by_field(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        with self._lock:
            return [r for r in self._load(collection).values() if r.get(field) == value]

    def delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            rows = self._load(collection)
            if rows.pop(str(record_id), None) is None:
                return False
            self._save(collection, rows)
            return True

    def delete_by_field(self, collection: str, field: str, value: Any) -> int:
        with self._lock:
            rows = self._load(collection)
            kept = {k: r for k, r in rows.items() if r.get(field) != value}
            removed = len(rows) - len(kept)
            if removed:
                self._save(collection, kept)
            return removed

    def all(self, collection: str) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return self._load(collection)

    def export(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        with self._lock:
            return {collection: self._load(collection) for collection in COLLECTION_KEYS}
