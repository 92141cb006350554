"""Tests for clinician provisioning and updates."""
from conftest import PASSWORD


def test_create_and_list(client, admin_headers, make_clinician):
    make_clinician(name="Zoe Lima", specialty="CBT", consultation_fee=180)
    make_clinician(name="Ana Reis", phone="555-0200")

    rows = client.get('/api/clinicians', headers=admin_headers).get_json()
    assert [row["name"] for row in rows] == ["Ana Reis", "Zoe Lima"]
    assert rows[0]["phone"] == "555-0200"
    assert rows[0]["email"].endswith("@clinic.local")
    assert rows[1]["specialty"] == "CBT"
    assert rows[1]["consultation_fee"] == 180.0
    assert all(row["active"] for row in rows)


def test_new_clinician_can_log_in(client, make_clinician):
    clinician = make_clinician()
    response = client.get('/api/auth/session', headers=clinician["headers"])
    assert response.get_json()["user"]["role"] == "clinician"


def test_required_fields(client, admin_headers):
    response = client.post('/api/clinicians', json={
        "name": "No License", "email": "nolicense@clinic.local", "password": PASSWORD,
    }, headers=admin_headers)
    assert response.status_code == 400
    assert "license_number" in response.get_json()["error"]


def test_email_and_license_are_unique(client, admin_headers, make_clinician):
    make_clinician(email="dup@clinic.local", license_number="CRP-DUP")

    response = client.post('/api/clinicians', json={
        "name": "Other", "email": "dup@clinic.local", "password": PASSWORD, "license_number": "CRP-NEW",
    }, headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json() == {"error": "email already registered"}

    response = client.post('/api/clinicians', json={
        "name": "Other", "email": "other@clinic.local", "password": PASSWORD, "license_number": "CRP-DUP",
    }, headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json() == {"error": "license number already registered"}


def test_only_admin_manages_clinicians(client, attendant_headers, make_clinician):
    clinician = make_clinician()
    payload = {"name": "X", "email": "x@clinic.local", "password": PASSWORD, "license_number": "CRP-X"}

    assert client.post('/api/clinicians', json=payload, headers=attendant_headers).status_code == 403
    assert client.post('/api/clinicians', json=payload, headers=clinician["headers"]).status_code == 403
    assert client.put(f'/api/clinicians/{clinician["id"]}', json={"bio": "x"},
                      headers=clinician["headers"]).status_code == 403


class TestUpdate:
    def test_partial_update(self, client, admin_headers, make_clinician):
        clinician = make_clinician(name="Before", specialty="Family", bio="Original bio")

        response = client.put(f'/api/clinicians/{clinician["id"]}', json={
            "name": "After", "consultation_fee": 200.5, "bio": None,
        }, headers=admin_headers)

        assert response.status_code == 200
        updated = response.get_json()["clinician"]
        assert updated["name"] == "After"
        assert updated["consultation_fee"] == 200.5
        assert updated["bio"] is None
        assert updated["specialty"] == "Family"

    def test_password_change(self, client, admin_headers, make_clinician):
        clinician = make_clinician()
        response = client.put(f'/api/clinicians/{clinician["id"]}', json={"password": "brand-new-pass"},
                              headers=admin_headers)
        assert response.status_code == 200

        old = client.post('/api/auth/login', json={"email": clinician["email"], "password": PASSWORD})
        assert old.status_code == 401
        new = client.post('/api/auth/login', json={"email": clinician["email"], "password": "brand-new-pass"})
        assert new.status_code == 200

    def test_license_change_must_be_unique(self, client, admin_headers, make_clinician):
        make_clinician(license_number="CRP-TAKEN")
        clinician = make_clinician()

        response = client.put(f'/api/clinicians/{clinician["id"]}', json={"license_number": "CRP-TAKEN"},
                              headers=admin_headers)
        assert response.status_code == 400

    def test_deactivate(self, client, admin_headers, make_clinician):
        clinician = make_clinician()
        response = client.put(f'/api/clinicians/{clinician["id"]}', json={"active": False}, headers=admin_headers)
        assert response.get_json()["clinician"]["active"] is False

        assert client.put(f'/api/clinicians/{clinician["id"]}', json={"active": "maybe"},
                          headers=admin_headers).status_code == 400

    def test_unknown_clinician(self, client, admin_headers):
        assert client.put('/api/clinicians/missing', json={"bio": "x"}, headers=admin_headers).status_code == 404
