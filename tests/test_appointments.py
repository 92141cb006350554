"""Tests for appointment scheduling, status workflow and auto-billing."""
from clinic_app_pkg import db
from clinic_app_pkg.models import Appointment, Patient, Transaction


def test_create_assigns_clinician_to_unassigned_patient(app, client, admin_headers, make_clinician, make_patient):
    clinician = make_clinician()
    patient = make_patient()

    response = client.post('/api/appointments', json={
        "patient_id": patient["id"],
        "clinician_id": clinician["id"],
        "scheduled_at": "2030-05-01T14:00:00",
    }, headers=admin_headers)

    assert response.status_code == 201
    appointment = response.get_json()["appointment"]
    assert appointment["status"] == "scheduled"
    assert appointment["duration_minutes"] == 50
    assert appointment["fee"] is None
    with app.app_context():
        assert db.session.get(Patient, patient["id"]).clinician_id == clinician["id"]


def test_assigned_clinician_is_never_overwritten(app, make_clinician, make_patient, make_appointment):
    first = make_clinician()
    second = make_clinician()
    patient = make_patient()

    make_appointment(patient["id"], first["id"])
    make_appointment(patient["id"], second["id"])

    with app.app_context():
        assert db.session.get(Patient, patient["id"]).clinician_id == first["id"]


def test_inactive_clinician_cannot_be_booked(app, client, admin_headers, make_clinician, make_patient):
    clinician = make_clinician()
    patient = make_patient()
    client.put(f'/api/clinicians/{clinician["id"]}', json={"active": False}, headers=admin_headers)

    response = client.post('/api/appointments', json={
        "patient_id": patient["id"],
        "clinician_id": clinician["id"],
        "scheduled_at": "2030-05-01T14:00:00",
    }, headers=admin_headers)

    assert response.status_code == 400
    assert response.get_json() == {"error": "clinician not found or inactive"}
    with app.app_context():
        assert Appointment.query.count() == 0
        assert db.session.get(Patient, patient["id"]).clinician_id is None


def test_unknown_patient_is_rejected(client, admin_headers, make_clinician):
    clinician = make_clinician()
    response = client.post('/api/appointments', json={
        "patient_id": "missing",
        "clinician_id": clinician["id"],
        "scheduled_at": "2030-05-01T14:00:00",
    }, headers=admin_headers)

    assert response.status_code == 400
    assert response.get_json() == {"error": "patient not found"}


def test_invalid_payloads(client, admin_headers, make_clinician, make_patient):
    clinician = make_clinician()
    patient = make_patient()
    base = {"patient_id": patient["id"], "clinician_id": clinician["id"], "scheduled_at": "2030-05-01T14:00:00"}

    for override in ({"scheduled_at": "tomorrow"}, {"status": "done"}, {"fee": -5}, {"duration_minutes": 0}):
        response = client.post('/api/appointments', json={**base, **override}, headers=admin_headers)
        assert response.status_code == 400, override


def test_non_string_reference_ids_are_rejected(client, admin_headers, make_clinician, make_patient):
    clinician = make_clinician()
    patient = make_patient()

    response = client.post('/api/appointments', json={
        "patient_id": {"a": 1}, "clinician_id": clinician["id"], "scheduled_at": "2030-05-01T14:00:00",
    }, headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json() == {"error": "patient_id must be a string."}

    response = client.post('/api/appointments', json={
        "patient_id": patient["id"], "clinician_id": [1, 2], "scheduled_at": "2030-05-01T14:00:00",
    }, headers=admin_headers)
    assert response.status_code == 400


def test_clinician_cannot_create_appointments(client, make_clinician, make_patient):
    clinician = make_clinician()
    patient = make_patient()
    response = client.post('/api/appointments', json={
        "patient_id": patient["id"], "clinician_id": clinician["id"], "scheduled_at": "2030-05-01T14:00:00",
    }, headers=clinician["headers"])
    assert response.status_code == 403


class TestListing:
    def test_clinicians_only_see_their_own(self, client, admin_headers, make_clinician, make_patient, make_appointment):
        a = make_clinician()
        b = make_clinician()
        patient = make_patient()
        mine = make_appointment(patient["id"], a["id"])
        make_appointment(patient["id"], b["id"])

        response = client.get('/api/appointments', headers=a["headers"])
        assert response.status_code == 200
        assert [row["id"] for row in response.get_json()] == [mine["id"]]

        # clinician_id filter cannot widen a clinician's scope
        response = client.get(f'/api/appointments?clinician_id={b["id"]}', headers=a["headers"])
        assert [row["id"] for row in response.get_json()] == [mine["id"]]

        assert len(client.get('/api/appointments', headers=admin_headers).get_json()) == 2

    def test_newest_first_with_related_names(self, client, admin_headers, make_clinician, make_patient, make_appointment):
        clinician = make_clinician(name="Dr. Ana")
        patient = make_patient(name="Bruno", phone="555-0100")
        early = make_appointment(patient["id"], clinician["id"], scheduled_at="2030-01-01T09:00:00")
        late = make_appointment(patient["id"], clinician["id"], scheduled_at="2030-02-01T09:00:00")

        rows = client.get('/api/appointments', headers=admin_headers).get_json()
        assert [row["id"] for row in rows] == [late["id"], early["id"]]
        assert rows[0]["patient_name"] == "Bruno"
        assert rows[0]["patient_phone"] == "555-0100"
        assert rows[0]["clinician_name"] == "Dr. Ana"
        assert rows[0]["clinician_license"]

    def test_filters(self, client, admin_headers, make_clinician, make_patient, make_appointment):
        clinician = make_clinician()
        patient = make_patient()
        january = make_appointment(patient["id"], clinician["id"], scheduled_at="2030-01-15T09:00:00")
        make_appointment(patient["id"], clinician["id"], scheduled_at="2030-03-15T09:00:00", status="confirmed")

        rows = client.get('/api/appointments?start_date=2030-01-01&end_date=2030-01-31',
                          headers=admin_headers).get_json()
        assert [row["id"] for row in rows] == [january["id"]]

        rows = client.get('/api/appointments?status=confirmed', headers=admin_headers).get_json()
        assert len(rows) == 1 and rows[0]["status"] == "confirmed"

        assert client.get('/api/appointments?start_date=01/01/2030', headers=admin_headers).status_code == 400


class TestStatusUpdates:
    def _walk(self, client, headers, appointment_id, *statuses):
        response = None
        for status in statuses:
            response = client.put(f'/api/appointments/{appointment_id}/status',
                                  json={"status": status}, headers=headers)
            assert response.status_code == 200, response.get_json()
        return response

    def test_completion_records_exactly_one_transaction(self, app, client, admin_headers,
                                                         make_clinician, make_patient, make_appointment):
        clinician = make_clinician()
        patient = make_patient()
        appointment = make_appointment(patient["id"], clinician["id"], fee=150.00)

        response = self._walk(client, admin_headers, appointment["id"], "confirmed", "in_progress", "completed")
        transaction = response.get_json()["transaction"]
        assert transaction["amount"] == 150.0
        assert transaction["status"] == "paid"
        assert transaction["type"] == "income"
        assert transaction["source"] == "auto"
        assert transaction["description"] == "service rendered"

        # Re-applying "completed" is a no-op and never bills twice.
        response = self._walk(client, admin_headers, appointment["id"], "completed")
        assert response.get_json()["transaction"] is None

        with app.app_context():
            rows = Transaction.query.filter_by(appointment_id=appointment["id"]).all()
            assert len(rows) == 1
            assert rows[0].amount == 150.0

    def test_concurrent_completion_is_absorbed_by_unique_index(self, app, client, admin_headers, monkeypatch,
                                                               make_clinician, make_patient, make_appointment):
        """A second writer that misses the existing row is stopped by the index, not the lookup."""
        clinician = make_clinician()
        patient = make_patient()
        appointment = make_appointment(patient["id"], clinician["id"], fee=150.00)
        self._walk(client, admin_headers, appointment["id"], "in_progress", "completed")

        monkeypatch.setattr('clinic_app_pkg.services.find_appointment_transaction', lambda appointment_id: None)
        response = self._walk(client, admin_headers, appointment["id"], "completed")

        assert response.get_json()["transaction"] is None
        assert response.get_json()["appointment"]["status"] == "completed"
        with app.app_context():
            assert Transaction.query.filter_by(appointment_id=appointment["id"]).count() == 1
            assert db.session.get(Appointment, appointment["id"]).status == "completed"

    def test_completion_without_fee_creates_nothing(self, app, client, admin_headers,
                                                    make_clinician, make_patient, make_appointment):
        clinician = make_clinician()
        patient = make_patient()
        appointment = make_appointment(patient["id"], clinician["id"])

        self._walk(client, admin_headers, appointment["id"], "in_progress", "completed")
        with app.app_context():
            assert Transaction.query.count() == 0

    def test_illegal_transitions(self, client, admin_headers, make_clinician, make_patient, make_appointment):
        clinician = make_clinician()
        patient = make_patient()
        appointment = make_appointment(patient["id"], clinician["id"])

        response = client.put(f'/api/appointments/{appointment["id"]}/status',
                              json={"status": "completed"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.get_json() == {"error": "invalid status transition from scheduled to completed"}

        self._walk(client, admin_headers, appointment["id"], "cancelled")
        response = client.put(f'/api/appointments/{appointment["id"]}/status',
                              json={"status": "scheduled"}, headers=admin_headers)
        assert response.status_code == 400

    def test_transitions_can_be_relaxed(self, app, client, admin_headers,
                                        make_clinician, make_patient, make_appointment):
        app.config['ENFORCE_STATUS_TRANSITIONS'] = False
        clinician = make_clinician()
        patient = make_patient()
        appointment = make_appointment(patient["id"], clinician["id"], fee=80)

        response = self._walk(client, admin_headers, appointment["id"], "completed")
        assert response.get_json()["transaction"]["amount"] == 80.0

    def test_invalid_or_missing_status(self, client, admin_headers, make_clinician, make_patient, make_appointment):
        clinician = make_clinician()
        patient = make_patient()
        appointment = make_appointment(patient["id"], clinician["id"])
        url = f'/api/appointments/{appointment["id"]}/status'

        assert client.put(url, json={"status": "finished"}, headers=admin_headers).status_code == 400
        assert client.put(url, json={}, headers=admin_headers).status_code == 400

    def test_unknown_appointment(self, client, admin_headers):
        response = client.put('/api/appointments/missing/status', json={"status": "confirmed"}, headers=admin_headers)
        assert response.status_code == 404

    def test_clinician_may_only_update_own(self, client, make_clinician, make_patient, make_appointment):
        owner = make_clinician()
        other = make_clinician()
        patient = make_patient()
        appointment = make_appointment(patient["id"], owner["id"])
        url = f'/api/appointments/{appointment["id"]}/status'

        assert client.put(url, json={"status": "confirmed"}, headers=other["headers"]).status_code == 403
        assert client.put(url, json={"status": "confirmed"}, headers=owner["headers"]).status_code == 200

    def test_attendant_can_update(self, client, attendant_headers, make_clinician, make_patient, make_appointment):
        clinician = make_clinician()
        patient = make_patient()
        appointment = make_appointment(patient["id"], clinician["id"])
        response = client.put(f'/api/appointments/{appointment["id"]}/status',
                              json={"status": "confirmed"}, headers=attendant_headers)
        assert response.status_code == 200
