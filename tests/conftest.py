"""Shared test fixtures."""
import datetime
import itertools

import pytest

from clinic_app_pkg import create_app, db
from clinic_app_pkg.models import ROLE_ATTENDANT, utcnow
from clinic_app_pkg.services import provision_account

ADMIN_EMAIL = 'admin@clinic.local'
ADMIN_PASSWORD = 'admin123'
PASSWORD = 'secret-pass-1'

_seq = itertools.count(1)


@pytest.fixture
def app():
    """Fresh application on its own in-memory database."""
    app = create_app('testing')
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def login(client):
    """Log in and return the Authorization header for the new session."""
    def _login(email, password=PASSWORD):
        response = client.post('/api/auth/login', json={"email": email, "password": password})
        assert response.status_code == 200, response.get_json()
        return bearer(response.get_json()["token"])
    return _login


@pytest.fixture
def admin_headers(login):
    return login(ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def attendant_headers(app, login):
    with app.app_context():
        provision_account('front.desk@clinic.local', PASSWORD, 'Front Desk', ROLE_ATTENDANT)
        db.session.commit()
    return login('front.desk@clinic.local')


@pytest.fixture
def make_clinician(client, admin_headers, login):
    """Create a clinician through the API; returns its ids and login headers."""
    def _create(name=None, **fields):
        n = next(_seq)
        payload = {
            "name": name or f"Clinician {n}",
            "email": f"clinician{n}@clinic.local",
            "password": PASSWORD,
            "license_number": f"CRP-{n:05d}",
        }
        payload.update(fields)
        response = client.post('/api/clinicians', json=payload, headers=admin_headers)
        assert response.status_code == 201, response.get_json()
        data = response.get_json()
        return {
            "id": data["id"],
            "user_id": data["user_id"],
            "email": payload["email"],
            "headers": login(payload["email"], payload["password"]),
        }
    return _create


@pytest.fixture
def make_patient(client, admin_headers):
    """Create a patient through the API; returns the response body."""
    def _create(name=None, **fields):
        n = next(_seq)
        payload = {"name": name or f"Patient {n}", "email": f"patient{n}@example.com"}
        payload.update(fields)
        response = client.post('/api/patients', json=payload, headers=admin_headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()
    return _create


@pytest.fixture
def patient_headers(client, login):
    """Headers for a self-registered patient account."""
    response = client.post('/api/auth/register', json={
        "email": "self.signup@example.com", "password": PASSWORD, "name": "Self Signup",
    })
    assert response.status_code == 201
    return login("self.signup@example.com")


@pytest.fixture
def make_appointment(client, admin_headers):
    def _create(patient_id, clinician_id, **fields):
        payload = {
            "patient_id": patient_id,
            "clinician_id": clinician_id,
            "scheduled_at": (utcnow() + datetime.timedelta(days=1)).isoformat(),
        }
        payload.update(fields)
        response = client.post('/api/appointments', json=payload, headers=admin_headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()["appointment"]
    return _create


def today_at(hour, minute=0):
    """ISO timestamp for a fixed time on the current UTC day."""
    return datetime.datetime.combine(utcnow().date(), datetime.time(hour, minute)).isoformat()
