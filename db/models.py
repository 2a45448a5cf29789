# db/models.py
from sqlalchemy import Column, Integer, String, JSON, LargeBinary, DateTime, UniqueConstraint, func
from db.database import Base


class Document(Base):
    """
    One record of one collection. The record itself lives in `body`; the
    natural identifier is copied out so lookups and upserts can use an index.
    """
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "natural_id", name="uq_documents_collection_natural_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    collection = Column(String(64), nullable=False, index=True)
    natural_id = Column(String(128), nullable=False)
    body = Column(JSON, nullable=False, default=dict)

    # Only image uploads carry a payload; it is never part of `body`
    blob = Column(LargeBinary, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
