# db/schemas.py
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

FeatureType = Literal[
    "symptom-analysis",
    "medication-info",
    "health-recommendations",
    "image-analysis",
    "report-analysis",
    "emergency-guidance",
]


# -------------------- RECORD TYPES --------------------

class TelemedRecord(BaseModel):
    """Base for every stored record. Unknown fields are kept as-is."""
    model_config = ConfigDict(extra="allow")


class Patient(TelemedRecord):
    """Patient profile; demographic and history fields are free-form extras."""
    patientId: Optional[str] = Field(None, description="Natural identifier, assigned by the writer.")
    email: Optional[str] = None
    password: Optional[str] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class Consultation(TelemedRecord):
    """One AI exchange. Immutable once written, apart from deletion."""
    consultationId: Optional[str] = None
    patientId: str
    featureType: FeatureType
    messages: List[Any] = Field(default_factory=list)
    aiResponse: str = ""
    timestamp: Optional[str] = None
    status: Optional[str] = None


class MedicalRecord(TelemedRecord):
    recordId: Optional[str] = None
    patientId: str
    createdAt: Optional[str] = None


class ImageAnalysis(TelemedRecord):
    """Image metadata. `imageData` is always null outside the backend."""
    imageId: Optional[str] = None
    patientId: str
    fileName: Optional[str] = None
    fileSize: Optional[int] = Field(None, ge=0)
    fileType: Optional[str] = None
    analysisResult: Optional[str] = None
    uploadedAt: Optional[str] = None
    imageData: None = None


class AnalyticsEvent(TelemedRecord):
    eventId: Optional[str] = None
    patientId: str
    sessionId: Optional[str] = None
    eventType: str
    eventData: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None


# -------------------- COLLECTION REGISTRY --------------------

@dataclass(frozen=True)
class CollectionSpec:
    name: str
    key: str                    # natural identifier field
    model: Type[TelemedRecord]
    time_field: str             # newest-first ordering


COLLECTIONS: Dict[str, CollectionSpec] = {
    "patients": CollectionSpec("patients", "patientId", Patient, "updatedAt"),
    "consultations": CollectionSpec("consultations", "consultationId", Consultation, "timestamp"),
    "medicalRecords": CollectionSpec("medicalRecords", "recordId", MedicalRecord, "createdAt"),
    "imageAnalyses": CollectionSpec("imageAnalyses", "imageId", ImageAnalysis, "uploadedAt"),
    "analytics": CollectionSpec("analytics", "eventId", AnalyticsEvent, "timestamp"),
}

# Binary-free collections, parents first
SYNC_COLLECTIONS = ("patients", "consultations", "medicalRecords", "analytics")


class RecordValidationError(ValueError):
    def __init__(self, collection: str, detail: Any):
        self.collection = collection
        self.detail = detail
        super().__init__(f"Invalid {collection} record: {detail}")


def validate_record(collection: str, payload: Any) -> Dict[str, Any]:
    """
    Validates a payload against the collection's record type and returns a
    JSON-ready dict containing only the fields the caller supplied.
    """
    spec = COLLECTIONS[collection]
    try:
        record = spec.model.model_validate(payload)
        return record.model_dump(mode="json", exclude_unset=True)
    except ValueError as e:  # ValidationError and serialization failures
        raise RecordValidationError(collection, e) from e


def natural_key(collection: str) -> str:
    return COLLECTIONS[collection].key


# -------------------- HELPERS --------------------

def generate_id(prefix: str = "id") -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parses an ISO-8601 string; naive values are taken as UTC. Returns None if unparsable."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def newest_first(records: List[Dict[str, Any]], field: str) -> List[Dict[str, Any]]:
    """Sorts by a timestamp field, descending. Records without a parsable value go last."""
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(records, key=lambda r: parse_timestamp(r.get(field)) or oldest, reverse=True)


def within_range(record: Dict[str, Any], field: str, start: Any = None, end: Any = None) -> bool:
    start_at = parse_timestamp(start)
    end_at = parse_timestamp(end)
    if start_at is None and end_at is None:
        return True
    moment = parse_timestamp(record.get(field))
    if moment is None:
        return False
    if start_at is not None and moment < start_at:
        return False
    if end_at is not None and moment > end_at:
        return False
    return True


def without_password(patient: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if patient is None:
        return None
    return {k: v for k, v in patient.items() if k != "password"}
