# client/coordinator.py
"""
Persistence coordinator: one CRUD-like surface over the remote backend and
local durable storage.

Each operation tries the backend while it is reachable and otherwise, or on
any RemoteError, performs the same operation against the local RecordStore.
Callers always get the `{"success": bool, "data" | "error": ...}` envelope,
whichever store answered.
"""
import json
import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from client.api_client import APIConfig, RemoteAPIClient
from client.errors import InvalidRecordError, RemoteError, StorageError
from client.record_store import RecordStore
from client.storage import LocalStorage, SessionStorage, dump_json, load_json
from client.sync import SyncEngine
from config import Config
from db.passwords import password_matches, protect_password
from db.schemas import (
    RecordValidationError,
    generate_id,
    newest_first,
    utc_now,
    validate_record,
    within_range,
    without_password,
)

logger = logging.getLogger(__name__)

CURRENT_USER_KEY = "currentUser"
SESSION_ID_KEY = "sessionId"
ANONYMOUS = "anonymous"
LOCAL_ANALYTICS_LIMIT = 1000

Envelope = Dict[str, Any]


@dataclass
class ImageFile:
    filename: str
    content: bytes
    mime_type: Optional[str] = None


def ok(data: Any) -> Envelope:
    return {"success": True, "data": data}


def failure(error: str) -> Envelope:
    return {"success": False, "error": error}


class PersistenceCoordinator:

    def __init__(
        self,
        api: RemoteAPIClient,
        records: RecordStore,
        session_storage: SessionStorage = None,
        reprobe_interval: Optional[float] = None,
        sync_engine: SyncEngine = None,
        auto_connect: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            api: client for the REST backend
            records: local fallback store; its storage also holds `currentUser`
            session_storage: process-scoped storage for the session id
            reprobe_interval: seconds after a failed probe before the next
                operation probes again; None never re-probes automatically
            sync_engine: defaults to a SyncEngine over `api` and `records`
            auto_connect: probe the backend immediately
        """
        self.api = api
        self.records = records
        self.session_storage = session_storage or SessionStorage()
        self.sync_engine = sync_engine or SyncEngine(api, records)
        self.reprobe_interval = reprobe_interval
        self._clock = clock
        self._last_probe = None

        self.is_connected = False
        self.current_user = self._load_current_user()

        if auto_connect:
            self.check_connection()

    @classmethod
    def from_config(cls, config=Config, session=None, **kwargs) -> "PersistenceCoordinator":
        api = RemoteAPIClient(APIConfig.from_config(config), session=session)
        records = RecordStore(LocalStorage(config.LOCAL_STORAGE_DIR))
        kwargs.setdefault("reprobe_interval", config.REPROBE_INTERVAL)
        return cls(api, records, **kwargs)

    # -------------------- CONNECTIVITY --------------------

    def check_connection(self) -> bool:
        """Probes GET /health and records the outcome."""
        was_connected = self.is_connected
        self._last_probe = self._clock()
        try:
            self.api.health()
            self.is_connected = True
        except RemoteError as e:
            logger.debug(f"Health probe failed: {e}")
            self.is_connected = False

        if self.is_connected and not was_connected:
            logger.info("Database connection established")
        elif not self.is_connected:
            logger.info("Database connection failed, using local storage fallback")
        return self.is_connected

    def _maybe_reprobe(self) -> None:
        if self.is_connected or self.reprobe_interval is None:
            return
        if self._last_probe is None or self._clock() - self._last_probe >= self.reprobe_interval:
            self.check_connection()

    def _attempt(self, operation: str, remote: Callable[[], Envelope], local: Callable[[], Envelope]) -> Envelope:
        """
        Runs `remote` while connected and falls back to `local` on RemoteError.
        A network-level failure also marks the backend unreachable until the
        next probe.
        """
        self._maybe_reprobe()
        if self.is_connected:
            try:
                return remote()
            except RemoteError as e:
                logger.warning(f"{operation}: backend error, using local storage ({e})")
                if e.status_code is None:
                    self.is_connected = False
                    self._last_probe = self._clock()
        return local()

    # -------------------- HELPERS --------------------

    @staticmethod
    def _validated(collection: str, payload: Any) -> Dict[str, Any]:
        try:
            return validate_record(collection, payload)
        except RecordValidationError as e:
            raise InvalidRecordError(str(e)) from e

    def _current_patient_id(self) -> str:
        if self.current_user and self.current_user.get("patientId"):
            return self.current_user["patientId"]
        return ANONYMOUS

    def _load_current_user(self) -> Optional[Dict[str, Any]]:
        try:
            return load_json(self.records.storage, CURRENT_USER_KEY)
        except StorageError as e:
            logger.warning(f"Ignoring unreadable saved user: {e}")
            return None

    def _remember_user(self, user: Optional[Dict[str, Any]]) -> None:
        self.current_user = without_password(user)
        if user is None:
            self.records.storage.remove_item(CURRENT_USER_KEY)
        else:
            dump_json(self.records.storage, CURRENT_USER_KEY, self.current_user)

    def get_session_id(self) -> str:
        session_id = self.session_storage.get_item(SESSION_ID_KEY)
        if not session_id:
            session_id = generate_id("session")
            self.session_storage.set_item(SESSION_ID_KEY, session_id)
        return session_id

    # -------------------- PATIENTS --------------------

    def create_patient(self, patient_data: Dict[str, Any]) -> Envelope:
        now = utc_now()
        patient = self._validated("patients", {
            "patientId": generate_id(),
            **patient_data,
            "createdAt": now,
            "updatedAt": now,
        })

        def local():
            stored = self.records.put("patients", patient["patientId"], protect_password(dict(patient)))
            return ok(without_password(stored))

        result = self._attempt("create_patient", lambda: self.api.create_patient(patient), local)
        if result.get("success"):
            self._remember_user(result["data"])
        return result

    def get_patient(self, patient_id: str) -> Envelope:
        def local():
            patient = self.records.get("patients", patient_id)
            return ok(without_password(patient)) if patient else failure("Patient not found")

        return self._attempt("get_patient", lambda: self.api.get_patient(patient_id), local)

    def update_patient(self, patient_id: str, update_data: Dict[str, Any]) -> Envelope:
        fields = self._validated("patients", {**update_data, "updatedAt": utc_now()})
        fields.pop("patientId", None)
        fields.pop("createdAt", None)

        def local():
            patient = self.records.patch("patients", patient_id, protect_password(dict(fields)))
            return ok(without_password(patient)) if patient else failure("Patient not found")

        result = self._attempt("update_patient", lambda: self.api.update_patient(patient_id, fields), local)
        if result.get("success"):
            self._remember_user(result["data"])
        return result

    # -------------------- CONSULTATIONS --------------------

    def save_consultation(self, consultation_data: Dict[str, Any]) -> Envelope:
        consultation = self._validated("consultations", {
            "consultationId": generate_id(),
            "patientId": self._current_patient_id(),
            "status": "completed",
            **consultation_data,
            "timestamp": utc_now(),
        })

        def local():
            return ok(self.records.put("consultations", consultation["consultationId"], consultation))

        return self._attempt("save_consultation", lambda: self.api.create_consultation(consultation), local)

    def get_consultation_history(self, patient_id: str, limit: int = 10) -> Envelope:
        def local():
            consultations = self.records.query_by_field("consultations", "patientId", patient_id)
            return ok(newest_first(consultations, "timestamp")[:limit])

        return self._attempt(
            "get_consultation_history",
            lambda: self.api.list_consultations(patient_id, limit),
            local,
        )

    def delete_consultation(self, consultation_id: str) -> Envelope:
        # The local copy always goes too, or the next sync would bring it back
        def local():
            if self.records.delete("consultations", consultation_id):
                return ok({"consultationId": consultation_id, "deleted": True})
            return failure("Consultation not found")

        def remote():
            body = self.api.delete_consultation(consultation_id)
            deleted_locally = self.records.delete("consultations", consultation_id)
            if body.get("success") or deleted_locally:
                return ok({"consultationId": consultation_id, "deleted": True})
            return body

        return self._attempt("delete_consultation", remote, local)

    def clear_consultation_history(self, patient_id: str = None) -> Envelope:
        patient_id = patient_id or self._current_patient_id()

        def local():
            deleted = self.records.delete_by_field("consultations", "patientId", patient_id)
            return ok({"patientId": patient_id, "deleted": deleted})

        def remote():
            body = self.api.clear_consultations(patient_id)
            deleted = self.records.delete_by_field("consultations", "patientId", patient_id)
            return ok({"patientId": patient_id, "deleted": body["data"]["deleted"] + deleted})

        return self._attempt("clear_consultation_history", remote, local)

    # -------------------- MEDICAL RECORDS --------------------

    def save_medical_record(self, record_data: Dict[str, Any]) -> Envelope:
        record = self._validated("medicalRecords", {
            "recordId": generate_id(),
            "patientId": self._current_patient_id(),
            **record_data,
            "createdAt": utc_now(),
        })

        def local():
            return ok(self.records.put("medicalRecords", record["recordId"], record))

        return self._attempt("save_medical_record", lambda: self.api.create_medical_record(record), local)

    def get_medical_records(self, patient_id: str) -> Envelope:
        def local():
            records = self.records.query_by_field("medicalRecords", "patientId", patient_id)
            return ok(newest_first(records, "createdAt"))

        return self._attempt("get_medical_records", lambda: self.api.list_medical_records(patient_id), local)

    # -------------------- IMAGES --------------------

    def save_image_analysis(self, image: ImageFile, analysis_result: str) -> Envelope:
        metadata = self._validated("imageAnalyses", {
            "imageId": generate_id(),
            "patientId": self._current_patient_id(),
            "fileName": image.filename,
            "fileSize": len(image.content),
            "fileType": image.mime_type,
            "analysisResult": analysis_result,
            "uploadedAt": utc_now(),
        })

        def remote():
            return self.api.upload_image(metadata, image.filename, image.content, image.mime_type)

        def local():
            # Local copies keep metadata only, never the image itself
            return ok(self.records.put("imageAnalyses", metadata["imageId"], {**metadata, "imageData": None}))

        return self._attempt("save_image_analysis", remote, local)

    def get_image_analyses(self, patient_id: str) -> Envelope:
        def local():
            images = self.records.query_by_field("imageAnalyses", "patientId", patient_id)
            return ok(newest_first(images, "uploadedAt"))

        return self._attempt("get_image_analyses", lambda: self.api.list_images(patient_id), local)

    # -------------------- ANALYTICS --------------------

    def save_analytics(self, event_data: Dict[str, Any]) -> Envelope:
        event = self._validated("analytics", {
            "eventId": generate_id(),
            "patientId": self._current_patient_id(),
            "sessionId": self.get_session_id(),
            **event_data,
            "timestamp": utc_now(),
        })

        def local():
            return ok(self.records.put("analytics", event["eventId"], event))

        return self._attempt("save_analytics", lambda: self.api.create_analytics_event(event), local)

    def get_analytics(
        self,
        patient_id: str,
        date_range: Optional[Dict[str, str]] = None,
        event_type: str = None,
    ) -> Envelope:
        date_range = date_range or {}
        start, end = date_range.get("start"), date_range.get("end")

        def remote():
            return self.api.list_analytics(patient_id, event_type=event_type, start_date=start, end_date=end)

        def local():
            events = [
                event for event in self.records.query_by_field("analytics", "patientId", patient_id)
                if (event_type is None or event.get("eventType") == event_type)
                and within_range(event, "timestamp", start, end)
            ]
            return ok(newest_first(events, "timestamp")[:LOCAL_ANALYTICS_LIMIT])

        return self._attempt("get_analytics", remote, local)

    # -------------------- AUTH --------------------

    def authenticate_user(self, credentials: Dict[str, Any]) -> Envelope:
        email, password = credentials.get("email"), credentials.get("password")

        def local():
            for patient in self.records.query_by_field("patients", "email", email):
                if password_matches(patient, password):
                    return ok({"user": without_password(patient), "token": secrets.token_urlsafe(24)})
            return failure("Invalid credentials")

        result = self._attempt("authenticate_user", lambda: self.api.login(email, password), local)
        if result.get("success"):
            self._remember_user(result["data"]["user"])
        return result

    def logout(self) -> None:
        self._remember_user(None)

    # -------------------- DASHBOARD --------------------

    def get_dashboard_stats(self) -> Envelope:
        def local():
            consultations = self.records.all("consultations").values()
            by_feature: Dict[Any, int] = {}
            for consultation in consultations:
                feature = consultation.get("featureType")
                by_feature[feature] = by_feature.get(feature, 0) + 1
            return ok({
                "totalPatients": len(self.records.all("patients")),
                "totalConsultations": len(consultations),
                "totalMedicalRecords": len(self.records.all("medicalRecords")),
                "totalImageAnalyses": len(self.records.all("imageAnalyses")),
                "totalAnalyticsEvents": len(self.records.all("analytics")),
                "consultationsByFeature": sorted(
                    ({"featureType": f, "count": n} for f, n in by_feature.items()),
                    key=lambda item: item["count"],
                    reverse=True,
                ),
            })

        return self._attempt("get_dashboard_stats", self.api.dashboard_stats, local)

    # -------------------- EXPORT / SYNC --------------------

    def export_all_data(self, path: Union[str, Path, None] = None) -> Dict[str, Any]:
        """Every local collection plus `exportDate`, optionally written to a JSON file."""
        export = {**self.records.export(), "exportDate": utc_now()}
        if path is not None:
            Path(path).write_text(json.dumps(export, indent=2), encoding="utf-8")
            logger.info(f"Exported local data to {path}")
        return export

    def sync_with_cloud(self) -> Envelope:
        if not self.is_connected and not self.check_connection():
            return failure("No database connection")
        return self.sync_engine.sync()
