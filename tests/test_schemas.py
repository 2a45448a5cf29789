# =============================================================================
# tests/test_schemas.py
# Record validation and the shared record helpers
# =============================================================================

import pytest

from db.passwords import carry_password, password_matches, protect_password
from db.schemas import (
    COLLECTIONS,
    SYNC_COLLECTIONS,
    RecordValidationError,
    generate_id,
    natural_key,
    newest_first,
    parse_timestamp,
    utc_now,
    validate_record,
    within_range,
    without_password,
)


class TestValidation:

    def test_unknown_fields_are_kept(self):
        record = validate_record("patients", {"patientId": "p1", "medicalHistory": {"asthma": True}})
        assert record == {"patientId": "p1", "medicalHistory": {"asthma": True}}

    def test_defaults_are_not_injected(self):
        record = validate_record("consultations", {"patientId": "p1", "featureType": "medication-info"})
        assert "messages" not in record
        assert "aiResponse" not in record

    @pytest.mark.parametrize("payload", [
        {"patientId": "p1", "featureType": "astrology"},
        {"featureType": "symptom-analysis"},
        ["not", "a", "mapping"],
    ])
    def test_invalid_consultations(self, payload):
        with pytest.raises(RecordValidationError) as excinfo:
            validate_record("consultations", payload)
        assert excinfo.value.collection == "consultations"

    def test_negative_file_size(self):
        with pytest.raises(RecordValidationError):
            validate_record("imageAnalyses", {"patientId": "p1", "fileSize": -1})

    def test_image_data_never_accepted(self):
        with pytest.raises(RecordValidationError):
            validate_record("imageAnalyses", {"patientId": "p1", "imageData": "aGVsbG8="})

    def test_registry(self):
        assert natural_key("medicalRecords") == "recordId"
        assert "imageAnalyses" in COLLECTIONS
        assert "imageAnalyses" not in SYNC_COLLECTIONS
        assert SYNC_COLLECTIONS[0] == "patients"


class TestHelpers:

    def test_generated_ids_are_unique(self):
        ids = {generate_id("session") for _ in range(200)}
        assert len(ids) == 200
        assert all(i.startswith("session_") for i in ids)

    def test_utc_now_round_trips(self):
        stamp = utc_now()
        assert stamp.endswith("Z")
        assert parse_timestamp(stamp) is not None

    def test_parse_timestamp_rejects_garbage(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None

    def test_newest_first_puts_undated_last(self):
        records = [
            {"id": "old", "timestamp": "2024-01-01T00:00:00Z"},
            {"id": "none"},
            {"id": "new", "timestamp": "2024-03-01T00:00:00.000Z"},
        ]
        assert [r["id"] for r in newest_first(records, "timestamp")] == ["new", "old", "none"]

    def test_within_range_is_inclusive(self):
        event = {"timestamp": "2024-01-01T00:00:00.000Z"}
        assert within_range(event, "timestamp", "2024-01-01T00:00:00Z", "2024-01-01T00:00:00Z")
        assert within_range(event, "timestamp")
        assert not within_range(event, "timestamp", start="2024-01-02T00:00:00Z")
        assert not within_range({}, "timestamp", end="2024-01-02T00:00:00Z")

    def test_without_password(self):
        assert without_password({"patientId": "p1", "password": "x"}) == {"patientId": "p1"}
        assert without_password(None) is None


class TestPasswords:

    def test_hash_once(self):
        record = protect_password({"password": "pw"})
        hashed = record["password"]
        assert protect_password(record)["password"] == hashed
        assert password_matches(record, "pw")
        assert not password_matches(record, "other")

    def test_no_password_never_matches(self):
        assert not password_matches({"patientId": "p1"}, "pw")
        assert not password_matches(None, "pw")

    def test_carry_keeps_existing_hash(self):
        existing = protect_password({"password": "pw"})
        assert carry_password({"password": "pw"}, existing)["password"] == existing["password"]

    def test_carry_rehashes_changed_password(self):
        existing = protect_password({"password": "pw"})
        record = carry_password({"password": "new"}, existing)
        assert record["password"] != existing["password"]
        assert password_matches(record, "new")
