"""HTTP client for the clinic API.

One ClinicClient wraps a requests.Session (connection reuse) and the bearer
token issued at login. Every non-2xx answer is raised as ClinicAPIError with
the server's ``error`` message. Requests are never retried: a status change
or transaction create is not safe to replay.
"""
import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15


class ClinicAPIError(Exception):
    """Non-2xx response from the clinic API."""

    def __init__(self, status_code, message):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class ClinicClient:
    def __init__(self, base_url, token=None, session=None, timeout=DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    # --- transport ---

    def _url(self, path):
        return f"{self.base_url}/api{path}"

    def _headers(self):
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _request(self, method, path, json=None, params=None):
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        response = self.session.request(
            method,
            self._url(path),
            json=json,
            params=params or None,
            headers=self._headers(),
            timeout=self.timeout,
        )
        if not 200 <= response.status_code < 300:
            try:
                message = response.json().get("error") or response.reason
            except ValueError:
                message = response.text or response.reason
            logger.warning(f"{method} {path} failed with {response.status_code}: {message}")
            raise ClinicAPIError(response.status_code, message)
        return response.json()

    # --- auth ---

    def login(self, email, password):
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.token = data["token"]
        return data

    def register(self, email, password, name):
        return self._request("POST", "/auth/register", json={"email": email, "password": password, "name": name})

    def get_session(self):
        """Current session, or None (and the token dropped) once the server rejects it."""
        if not self.token:
            return None
        try:
            return self._request("GET", "/auth/session")
        except ClinicAPIError as e:
            if e.status_code == 401:
                self.token = None
                return None
            raise

    def logout(self):
        try:
            if self.token:
                self._request("POST", "/auth/logout")
        finally:
            self.token = None

    # --- patients ---

    def list_patients(self):
        return self._request("GET", "/patients")

    def create_patient(self, **fields):
        return self._request("POST", "/patients", json=fields)

    def update_patient(self, patient_id, **fields):
        return self._request("PUT", f"/patients/{patient_id}", json=fields)

    def delete_patient(self, patient_id):
        return self._request("DELETE", f"/patients/{patient_id}")

    # --- clinicians ---

    def list_clinicians(self):
        return self._request("GET", "/clinicians")

    def create_clinician(self, **fields):
        return self._request("POST", "/clinicians", json=fields)

    def update_clinician(self, clinician_id, **fields):
        return self._request("PUT", f"/clinicians/{clinician_id}", json=fields)

    # --- appointments ---

    def list_appointments(self, **filters):
        return self._request("GET", "/appointments", params=filters)

    def create_appointment(self, **fields):
        return self._request("POST", "/appointments", json=fields)

    def update_appointment_status(self, appointment_id, status):
        return self._request("PUT", f"/appointments/{appointment_id}/status", json={"status": status})

    # --- clinical records ---

    def list_clinical_records(self, patient_id):
        return self._request("GET", f"/clinical-records/patient/{patient_id}")

    def create_clinical_record(self, patient_id, **fields):
        return self._request("POST", f"/clinical-records/patient/{patient_id}", json=fields)

    def update_clinical_record(self, record_id, **fields):
        return self._request("PUT", f"/clinical-records/{record_id}", json=fields)

    # --- financial ---

    def financial_report(self, start_date=None, end_date=None, clinician_id=None):
        return self._request("GET", "/financial/report", params={
            "start_date": start_date, "end_date": end_date, "clinician_id": clinician_id,
        })

    def list_transactions(self, **filters):
        return self._request("GET", "/financial/transactions", params=filters)

    def create_transaction(self, **fields):
        return self._request("POST", "/financial/transactions", json=fields)

    # --- dashboard ---

    def dashboard_stats(self):
        return self._request("GET", "/dashboard/stats")

    def todays_appointments(self):
        return self._request("GET", "/dashboard/today")

    def upcoming_appointments(self):
        return self._request("GET", "/dashboard/upcoming")

    def my_patients(self):
        return self._request("GET", "/dashboard/my-patients")

    def clinician_performance(self):
        return self._request("GET", "/dashboard/performance")
