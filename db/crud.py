from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from db import models


# -------------------- SINGLE DOCUMENT FUNCTIONS --------------------

def insert_document(db: Session, collection: str, natural_id: str, body: Dict[str, Any], blob: bytes = None):
    document = models.Document(collection=collection, natural_id=natural_id, body=body, blob=blob)
    db.add(document)
    db.commit()
    db.refresh(document)
    return document

def get_document(db: Session, collection: str, natural_id: str):
    return (db.query(models.Document)
              .filter(models.Document.collection == collection,
                      models.Document.natural_id == natural_id)
              .first())

def update_document(db: Session, collection: str, natural_id: str, fields: Dict[str, Any]):
    """Shallow-merges `fields` onto the stored body. Returns None if the document does not exist."""
    document = get_document(db, collection, natural_id)
    if document is None:
        return None
    # JSON columns only notice reassignment, not in-place mutation
    document.body = {**document.body, **fields}
    db.commit()
    db.refresh(document)
    return document

def delete_document(db: Session, collection: str, natural_id: str) -> bool:
    document = get_document(db, collection, natural_id)
    if document:
        db.delete(document)
        db.commit()
        return True
    return False


# -------------------- QUERY FUNCTIONS --------------------

def _filtered(db: Session, collection: str, filters: Dict[str, Any]):
    query = db.query(models.Document).filter(models.Document.collection == collection)
    for field, value in filters.items():
        query = query.filter(models.Document.body[field].as_string() == str(value))
    return query

def find_documents(db: Session, collection: str, filters: Dict[str, Any]) -> List[models.Document]:
    return _filtered(db, collection, filters).order_by(models.Document.id.asc()).all()

def delete_documents(db: Session, collection: str, filters: Dict[str, Any]) -> int:
    documents = _filtered(db, collection, filters).all()
    for document in documents:
        db.delete(document)
    db.commit()
    return len(documents)

def count_documents(db: Session, collection: str) -> int:
    return (db.query(func.count(models.Document.id))
              .filter(models.Document.collection == collection)
              .scalar()) or 0

def group_count(db: Session, collection: str, field: str) -> Dict[Optional[str], int]:
    value = models.Document.body[field].as_string()
    rows = (db.query(value, func.count(models.Document.id))
              .filter(models.Document.collection == collection)
              .group_by(value)
              .all())
    return {key: count for key, count in rows}


# -------------------- BULK UPSERT --------------------

def upsert_documents(db: Session, collection: str, key: str, records: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    """
    Insert-or-merge every record on its natural identifier, in one transaction.
    Later duplicates of the same identifier win.
    """
    latest: Dict[str, Dict[str, Any]] = {}
    for record in records:
        latest[str(record[key])] = record

    inserted = modified = 0
    try:
        for natural_id, record in latest.items():
            document = get_document(db, collection, natural_id)
            if document is None:
                db.add(models.Document(collection=collection, natural_id=natural_id, body=record))
                inserted += 1
                continue
            merged = {**document.body, **record}
            if merged != document.body:
                document.body = merged
                modified += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"inserted": inserted, "modified": modified, "matched": len(latest) - inserted}
