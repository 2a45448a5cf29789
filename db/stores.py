# db/stores.py
"""
Interchangeable storage backends for the REST service.

Both stores hold plain JSON-serializable dicts keyed by each collection's
natural identifier and expose the same operations, so the routes never know
which one is configured.
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from db import crud
from db.database import init_db, make_engine, make_session_factory
from db.schemas import COLLECTIONS, natural_key

logger = logging.getLogger(__name__)


class DuplicateKeyError(Exception):
    def __init__(self, collection: str, natural_id: str):
        self.collection = collection
        self.natural_id = natural_id
        super().__init__(f"{collection} record '{natural_id}' already exists")


class BaseStore(ABC):
    name = "base"

    @abstractmethod
    def insert(self, collection: str, record: Dict[str, Any], blob: bytes = None) -> Dict[str, Any]:
        """Stores a new record. Raises DuplicateKeyError if the natural identifier is taken."""

    @abstractmethod
    def get(self, collection: str, natural_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def update(self, collection: str, natural_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Shallow merge. Returns the merged record, or None if absent."""

    @abstractmethod
    def find(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        """Records whose fields equal every filter value, in insertion order."""

    @abstractmethod
    def delete(self, collection: str, natural_id: str) -> bool:
        pass

    @abstractmethod
    def delete_where(self, collection: str, **filters: Any) -> int:
        pass

    @abstractmethod
    def upsert_many(self, collection: str, records: Iterable[Dict[str, Any]]) -> Dict[str, int]:
        pass

    @abstractmethod
    def count(self, collection: str) -> int:
        pass

    @abstractmethod
    def group_count(self, collection: str, field: str) -> Dict[Optional[str], int]:
        pass

    @abstractmethod
    def get_blob(self, collection: str, natural_id: str) -> Optional[bytes]:
        pass

    def counts(self) -> Dict[str, int]:
        return {name: self.count(name) for name in COLLECTIONS}

    def close(self) -> None:
        pass


# -------------------- IN-MEMORY --------------------

class MemoryStore(BaseStore):
    name = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in COLLECTIONS}
        self._blobs: Dict[str, Dict[str, bytes]] = {name: {} for name in COLLECTIONS}

    def _collection(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(collection, {})

    def insert(self, collection, record, blob=None):
        natural_id = str(record[natural_key(collection)])
        with self._lock:
            rows = self._collection(collection)
            if natural_id in rows:
                raise DuplicateKeyError(collection, natural_id)
            rows[natural_id] = copy.deepcopy(record)
            if blob is not None:
                self._blobs.setdefault(collection, {})[natural_id] = blob
            return copy.deepcopy(rows[natural_id])

    def get(self, collection, natural_id):
        with self._lock:
            record = self._collection(collection).get(str(natural_id))
            return copy.deepcopy(record) if record is not None else None

    def update(self, collection, natural_id, fields):
        with self._lock:
            rows = self._collection(collection)
            if str(natural_id) not in rows:
                return None
            rows[str(natural_id)] = {**rows[str(natural_id)], **copy.deepcopy(fields)}
            return copy.deepcopy(rows[str(natural_id)])

    def find(self, collection, **filters):
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._collection(collection).values()
                if all(str(record.get(field)) == str(value) for field, value in filters.items())
            ]

    def delete(self, collection, natural_id):
        with self._lock:
            self._blobs.get(collection, {}).pop(str(natural_id), None)
            return self._collection(collection).pop(str(natural_id), None) is not None

    def delete_where(self, collection, **filters):
        with self._lock:
            doomed = [
                natural_id for natural_id, record in self._collection(collection).items()
                if all(str(record.get(field)) == str(value) for field, value in filters.items())
            ]
            for natural_id in doomed:
                self.delete(collection, natural_id)
            return len(doomed)

    def upsert_many(self, collection, records):
        key = natural_key(collection)
        inserted = modified = 0
        with self._lock:
            rows = self._collection(collection)
            latest = {str(record[key]): record for record in records}
            for natural_id, record in latest.items():
                current = rows.get(natural_id)
                if current is None:
                    rows[natural_id] = copy.deepcopy(record)
                    inserted += 1
                    continue
                merged = {**current, **copy.deepcopy(record)}
                if merged != current:
                    rows[natural_id] = merged
                    modified += 1
        return {"inserted": inserted, "modified": modified, "matched": len(latest) - inserted}

    def count(self, collection):
        with self._lock:
            return len(self._collection(collection))

    def group_count(self, collection, field):
        with self._lock:
            return dict(Counter(record.get(field) for record in self._collection(collection).values()))

    def get_blob(self, collection, natural_id):
        with self._lock:
            return self._blobs.get(collection, {}).get(str(natural_id))


# -------------------- DOCUMENT STORE (SQLAlchemy) --------------------

class DocumentStore(BaseStore):
    """Documents in a single SQL table with a JSON body column."""
    name = "document"

    def __init__(self, db_url: str):
        self.engine = make_engine(db_url)
        self.SessionLocal = make_session_factory(self.engine)
        init_db(self.engine)

    def _session(self):
        return self.SessionLocal()

    def insert(self, collection, record, blob=None):
        natural_id = str(record[natural_key(collection)])
        db = self._session()
        try:
            document = crud.insert_document(db, collection, natural_id, record, blob=blob)
            return dict(document.body)
        except IntegrityError as e:
            db.rollback()
            raise DuplicateKeyError(collection, natural_id) from e
        finally:
            db.close()

    def get(self, collection, natural_id):
        db = self._session()
        try:
            document = crud.get_document(db, collection, str(natural_id))
            return dict(document.body) if document else None
        finally:
            db.close()

    def update(self, collection, natural_id, fields):
        db = self._session()
        try:
            document = crud.update_document(db, collection, str(natural_id), fields)
            return dict(document.body) if document else None
        finally:
            db.close()

    def find(self, collection, **filters):
        db = self._session()
        try:
            return [dict(d.body) for d in crud.find_documents(db, collection, filters)]
        finally:
            db.close()

    def delete(self, collection, natural_id):
        db = self._session()
        try:
            return crud.delete_document(db, collection, str(natural_id))
        finally:
            db.close()

    def delete_where(self, collection, **filters):
        db = self._session()
        try:
            return crud.delete_documents(db, collection, filters)
        finally:
            db.close()

    def upsert_many(self, collection, records):
        db = self._session()
        try:
            return crud.upsert_documents(db, collection, natural_key(collection), records)
        finally:
            db.close()

    def count(self, collection):
        db = self._session()
        try:
            return crud.count_documents(db, collection)
        finally:
            db.close()

    def group_count(self, collection, field):
        db = self._session()
        try:
            return crud.group_count(db, collection, field)
        finally:
            db.close()

    def get_blob(self, collection, natural_id):
        db = self._session()
        try:
            document = crud.get_document(db, collection, str(natural_id))
            return document.blob if document else None
        finally:
            db.close()

    def close(self):
        self.engine.dispose()


def build_store(backend: str, db_url: str = None) -> BaseStore:
    if backend == "memory":
        logger.info("Using in-memory storage backend")
        return MemoryStore()
    if backend == "document":
        logger.info("Using document storage backend")
        return DocumentStore(db_url)
    raise ValueError(f"Unknown storage backend: {backend}")
