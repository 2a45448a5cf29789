# app/routes.py
import json
import logging
import secrets
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from db.passwords import carry_password, password_matches, protect_password
from db.schemas import (
    SYNC_COLLECTIONS,
    RecordValidationError,
    generate_id,
    natural_key,
    newest_first,
    utc_now,
    validate_record,
    within_range,
    without_password,
)

logger = logging.getLogger(__name__)
main = Blueprint("main", __name__)


def store():
    return current_app.extensions["telemed_store"]


def ok(data: Any, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def fail(error: str, status: int, **extra):
    return jsonify({"success": False, "error": error, **extra}), status


def json_body() -> Dict[str, Any]:
    data = request.get_json()
    if not isinstance(data, dict):
        raise RecordValidationError("request", "body must be a JSON object")
    return data


def query_limit(default: int) -> int:
    try:
        limit = int(request.args.get("limit", default))
    except (TypeError, ValueError):
        return default
    return limit if limit > 0 else default


# -------------------- HEALTH --------------------

@main.route("/health", methods=["GET"])
def health():
    return ok({
        "status": "healthy",
        "database": "connected",
        "backend": store().name,
        "collections": store().counts(),
        "timestamp": utc_now(),
    })


# -------------------- PATIENTS --------------------

@main.route("/patients", methods=["POST"])
def create_patient():
    patient = validate_record("patients", json_body())
    now = utc_now()
    patient["patientId"] = patient.get("patientId") or generate_id()
    patient["createdAt"] = now
    patient["updatedAt"] = now

    saved = store().insert("patients", protect_password(patient))
    logger.info(f"Created patient {saved['patientId']}")
    return ok(without_password(saved))


@main.route("/patients/<patient_id>", methods=["GET"])
def get_patient(patient_id):
    patient = store().get("patients", patient_id)
    if patient is None:
        return fail("Patient not found", 404)
    return ok(without_password(patient))


@main.route("/patients/<patient_id>", methods=["PUT"])
def update_patient(patient_id):
    fields = validate_record("patients", json_body())
    # Identity and creation time are owned by the store
    fields.pop("patientId", None)
    fields.pop("createdAt", None)
    fields["updatedAt"] = utc_now()

    patient = store().update("patients", patient_id, protect_password(fields))
    if patient is None:
        return fail("Patient not found", 404)
    return ok(without_password(patient))


# -------------------- CONSULTATIONS --------------------

@main.route("/consultations", methods=["POST"])
def create_consultation():
    consultation = validate_record("consultations", json_body())
    now = utc_now()
    consultation["consultationId"] = consultation.get("consultationId") or generate_id()
    consultation["timestamp"] = now
    consultation["createdAt"] = now
    consultation.setdefault("status", "completed")

    return ok(store().insert("consultations", consultation))


@main.route("/consultations/patient/<patient_id>", methods=["GET"])
def list_consultations(patient_id):
    limit = query_limit(current_app.config["DEFAULT_HISTORY_LIMIT"])
    consultations = newest_first(store().find("consultations", patientId=patient_id), "timestamp")
    return ok(consultations[:limit])


@main.route("/consultations/<consultation_id>", methods=["DELETE"])
def delete_consultation(consultation_id):
    if not store().delete("consultations", consultation_id):
        return fail("Consultation not found", 404)
    return ok({"consultationId": consultation_id, "deleted": True})


@main.route("/consultations/patient/<patient_id>", methods=["DELETE"])
def clear_consultations(patient_id):
    deleted = store().delete_where("consultations", patientId=patient_id)
    logger.info(f"Cleared {deleted} consultations for patient {patient_id}")
    return ok({"patientId": patient_id, "deleted": deleted})


# -------------------- MEDICAL RECORDS --------------------

@main.route("/medical-records", methods=["POST"])
def create_medical_record():
    record = validate_record("medicalRecords", json_body())
    record["recordId"] = record.get("recordId") or generate_id()
    record["createdAt"] = utc_now()
    return ok(store().insert("medicalRecords", record))


@main.route("/medical-records/patient/<patient_id>", methods=["GET"])
def list_medical_records(patient_id):
    records = store().find("medicalRecords", patientId=patient_id)
    return ok(newest_first(records, "createdAt"))


# -------------------- IMAGES --------------------

@main.route("/images", methods=["POST"])
def upload_image():
    image = request.files.get("image")
    if image is None:
        raise RecordValidationError("imageAnalyses", "no image file uploaded")

    try:
        metadata = json.loads(request.form.get("metadata") or "{}")
    except ValueError as e:
        raise RecordValidationError("imageAnalyses", f"unparsable metadata ({e})") from e
    if not isinstance(metadata, dict):
        raise RecordValidationError("imageAnalyses", "metadata must be a JSON object")

    content = image.read()
    if len(content) > current_app.config["MAX_IMAGE_SIZE"]:
        return fail("Image exceeds the upload size limit", 413)

    metadata.setdefault("fileName", image.filename)
    metadata.setdefault("fileType", image.mimetype)
    metadata["fileSize"] = len(content)
    metadata.pop("imageData", None)

    record = validate_record("imageAnalyses", metadata)
    record["imageId"] = record.get("imageId") or generate_id()
    record["uploadedAt"] = utc_now()

    saved = store().insert("imageAnalyses", record, blob=content)
    logger.info(f"Stored image {saved['imageId']} ({len(content)} bytes)")
    return ok({**saved, "imageData": None})


@main.route("/images/patient/<patient_id>", methods=["GET"])
def list_images(patient_id):
    # Metadata only; binaries never leave the store through this route
    images = newest_first(store().find("imageAnalyses", patientId=patient_id), "uploadedAt")
    return ok([{**image, "imageData": None} for image in images])


# -------------------- ANALYTICS --------------------

@main.route("/analytics", methods=["POST"])
def create_analytics_event():
    event = validate_record("analytics", json_body())
    event["eventId"] = event.get("eventId") or generate_id()
    event["timestamp"] = utc_now()
    return ok(store().insert("analytics", event))


@main.route("/analytics", methods=["GET"])
def list_analytics():
    filters = {}
    for field in ("patientId", "eventType"):
        if request.args.get(field):
            filters[field] = request.args[field]

    start, end = request.args.get("startDate"), request.args.get("endDate")
    events = [
        event for event in store().find("analytics", **filters)
        if within_range(event, "timestamp", start, end)
    ]
    limit = current_app.config["ANALYTICS_LIMIT"]
    return ok(newest_first(events, "timestamp")[:limit])


# -------------------- AUTH --------------------

@main.route("/auth/login", methods=["POST"])
def login():
    credentials = json_body()
    email, password = credentials.get("email"), credentials.get("password")

    if email and password:
        for patient in store().find("patients", email=email):
            if password_matches(patient, password):
                logger.info(f"Patient {patient.get('patientId')} logged in")
                return ok({
                    "user": without_password(patient),
                    "token": secrets.token_urlsafe(24),
                })

    # Same message whichever credential was wrong
    return fail("Invalid credentials", 401)


# -------------------- SYNC --------------------

def _sync_records(collection: str, payload: Any) -> Dict[str, Any]:
    rows = list(payload.values()) if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        raise RecordValidationError(collection, "expected a mapping or list of records")

    key = natural_key(collection)
    records = []
    for row in rows:
        record = validate_record(collection, row)
        if not record.get(key):
            raise RecordValidationError(collection, f"record without {key} cannot be upserted")
        if collection == "patients":
            carry_password(record, store().get("patients", record[key]))
        records.append(record)

    result = store().upsert_many(collection, records)
    return {"success": True, **result}


@main.route("/sync", methods=["POST"])
def sync():
    payload = json_body()
    results = {}

    # Each collection is its own failure domain
    for collection in SYNC_COLLECTIONS:
        if not payload.get(collection):
            continue
        try:
            results[collection] = _sync_records(collection, payload[collection])
        except Exception as e:
            logger.error(f"Sync failed for {collection}: {e}", exc_info=True)
            results[collection] = {"success": False, "error": str(e)}

    failed = [name for name, result in results.items() if not result["success"]]
    if failed:
        return fail(f"Sync failed for: {', '.join(failed)}", 500, data=results)

    return ok({"collections": results, "timestamp": utc_now()})


# -------------------- DASHBOARD --------------------

@main.route("/dashboard/stats", methods=["GET"])
def dashboard_stats():
    counts = store().counts()
    by_feature = store().group_count("consultations", "featureType")
    return ok({
        "totalPatients": counts["patients"],
        "totalConsultations": counts["consultations"],
        "totalMedicalRecords": counts["medicalRecords"],
        "totalImageAnalyses": counts["imageAnalyses"],
        "totalAnalyticsEvents": counts["analytics"],
        "consultationsByFeature": sorted(
            ({"featureType": feature, "count": count} for feature, count in by_feature.items()),
            key=lambda item: item["count"],
            reverse=True,
        ),
    })
