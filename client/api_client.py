# client/api_client.py
"""
Thin HTTP wrapper around the TeleMed REST backend.

Every call returns the decoded `{"success": ..., "data": ...}` envelope or
raises RemoteError. There is no retry here; deciding what to do on failure
is the coordinator's job.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import requests

from client.errors import RemoteError
from config import Config

logger = logging.getLogger(__name__)


@dataclass
class APIConfig:
    """Configuration for the backend connection"""
    base_url: str
    timeout: float = 5.0  # seconds, applied to connect and read
    headers: Optional[Dict[str, str]] = None

    @classmethod
    def from_config(cls, config=Config) -> "APIConfig":
        return cls(base_url=config.API_BASE_URL, timeout=config.API_TIMEOUT)


class RemoteAPIClient:

    def __init__(self, config: APIConfig, session: requests.Session = None):
        self.config = config
        self.session = session or requests.Session()
        if config.headers:
            self.session.headers.update(config.headers)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, Any]] = None,
        accept_status: Iterable[int] = (),
    ) -> Dict[str, Any]:
        """
        Make an HTTP request and decode the response envelope.

        Args:
            method: HTTP method
            endpoint: path relative to base_url
            params: query parameters
            payload: JSON body
            files / form: multipart body
            accept_status: non-2xx statuses whose envelope is a real answer

        Returns:
            Decoded envelope dict
        """
        url = f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        logger.debug(f"{method} {url}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=payload,
                files=files,
                data=form,
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"{method} {endpoint} failed: {e}") from e

        if not response.ok and response.status_code not in accept_status:
            raise RemoteError(f"{method} {endpoint} returned HTTP {response.status_code}", response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteError(f"{method} {endpoint} returned malformed JSON", response.status_code) from e

        if not isinstance(body, dict) or "success" not in body:
            raise RemoteError(f"{method} {endpoint} returned an unexpected body", response.status_code)
        return body

    # -------------------- HEALTH --------------------

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "health")

    # -------------------- PATIENTS --------------------

    def create_patient(self, patient: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "patients", payload=patient)

    def get_patient(self, patient_id: str) -> Dict[str, Any]:
        return self._request("GET", f"patients/{patient_id}")

    def update_patient(self, patient_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"patients/{patient_id}", payload=fields)

    # -------------------- CONSULTATIONS --------------------

    def create_consultation(self, consultation: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "consultations", payload=consultation)

    def list_consultations(self, patient_id: str, limit: int = 10) -> Dict[str, Any]:
        return self._request("GET", f"consultations/patient/{patient_id}", params={"limit": limit})

    def delete_consultation(self, consultation_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"consultations/{consultation_id}", accept_status=(404,))

    def clear_consultations(self, patient_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"consultations/patient/{patient_id}")

    # -------------------- MEDICAL RECORDS --------------------

    def create_medical_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "medical-records", payload=record)

    def list_medical_records(self, patient_id: str) -> Dict[str, Any]:
        return self._request("GET", f"medical-records/patient/{patient_id}")

    # -------------------- IMAGES --------------------

    def upload_image(self, metadata: Dict[str, Any], filename: str, content: bytes, mime_type: str = None) -> Dict[str, Any]:
        files = {"image": (filename, content, mime_type or "application/octet-stream")}
        return self._request("POST", "images", files=files, form={"metadata": json.dumps(metadata)})

    def list_images(self, patient_id: str) -> Dict[str, Any]:
        return self._request("GET", f"images/patient/{patient_id}")

    # -------------------- ANALYTICS --------------------

    def create_analytics_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "analytics", payload=event)

    def list_analytics(
        self,
        patient_id: str = None,
        event_type: str = None,
        start_date: str = None,
        end_date: str = None,
    ) -> Dict[str, Any]:
        params = {
            "patientId": patient_id,
            "eventType": event_type,
            "startDate": start_date,
            "endDate": end_date,
        }
        return self._request("GET", "analytics", params={k: v for k, v in params.items() if v})

    # -------------------- AUTH / SYNC / STATS --------------------

    def login(self, email: str, password: str) -> Dict[str, Any]:
        # A 401 is a definitive "wrong credentials", not an outage
        return self._request(
            "POST", "auth/login",
            payload={"email": email, "password": password},
            accept_status=(401,),
        )

    def sync(self, export: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "sync", payload=export)

    def dashboard_stats(self) -> Dict[str, Any]:
        return self._request("GET", "dashboard/stats")
