# clinic_app_pkg/patients/routes.py
import secrets
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.orm import joinedload
from .. import db
from ..errors import ValidationError
from ..models import Patient, Clinician, User, ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN, ROLE_PATIENT
from ..services import (
    provision_account, get_active_clinician, get_or_404, visible_patients_query,
    normalize_email, ensure_email_available, ensure_document_available,
)
from ..utils import role_required, get_json_payload, field, optional, require_fields, parse_date, UNSET

patients_bp = Blueprint('patients_bp', __name__)

PATIENT_FIELDS = ('address', 'emergency_contact', 'insurance', 'notes', 'medication')


def _birth_date(value):
    # Stored exactly as submitted once it parses as a date.
    if value is None:
        return None
    parse_date(value, 'birth_date')
    return value


@patients_bp.before_request
def ensure_json():
    if request.method in ['POST', 'PUT', 'PATCH'] and not request.is_json:
        return jsonify({"error": "Request body must be JSON."}), 415


@patients_bp.route('', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN)
def list_patients():
    patients = visible_patients_query(g.identity).options(
        joinedload(Patient.user).joinedload(User.profile),
        joinedload(Patient.clinician).joinedload(Clinician.user).joinedload(User.profile),
    ).order_by(Patient.created_at.desc()).all()
    return jsonify([p.to_dict() for p in patients]), 200


@patients_bp.route('', methods=['POST'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT)
def create_patient():
    data = get_json_payload()
    require_fields(data, 'name', 'email')

    clinician = None
    clinician_id = optional(data, 'clinician_id')
    if clinician_id:
        clinician = get_active_clinician(clinician_id)

    # Patients do not log in until an administrator sets a real credential.
    user = provision_account(
        email=data['email'],
        password=secrets.token_urlsafe(24),
        name=optional(data, 'name'),
        role=ROLE_PATIENT,
        phone=optional(data, 'phone'),
        birth_date=_birth_date(optional(data, 'birth_date')),
        document_number=optional(data, 'document_number'),
    )
    patient = Patient(clinician_id=clinician.id if clinician else None,
                      **{name: optional(data, name) for name in PATIENT_FIELDS})
    user.patient = patient
    db.session.commit()

    current_app.logger.info(f"Patient {patient.id} provisioned for {user.email}")
    return jsonify({
        "message": "Patient created successfully.",
        "id": patient.id,
        "user_id": user.id,
    }), 201


@patients_bp.route('/<string:patient_id>', methods=['PUT'])
@role_required(ROLE_ADMIN)
def update_patient(patient_id):
    patient = get_or_404(Patient, patient_id, "patient")
    user = patient.user
    profile = user.profile
    data = get_json_payload()

    email = field(data, 'email')
    if email is not UNSET:
        if email is None:
            raise ValidationError("email cannot be empty")
        email = normalize_email(email)
        ensure_email_available(email, exclude_user_id=user.id)
        user.email = email

    name = field(data, 'name')
    if name is not UNSET:
        if name is None:
            raise ValidationError("name cannot be empty")
        user.name = name
        profile.name = name

    document_number = field(data, 'document_number')
    if document_number is not UNSET:
        ensure_document_available(document_number, exclude_user_id=user.id)
        profile.document_number = document_number

    phone = field(data, 'phone')
    if phone is not UNSET:
        profile.phone = phone

    birth_date = field(data, 'birth_date')
    if birth_date is not UNSET:
        profile.birth_date = _birth_date(birth_date)

    clinician_id = field(data, 'clinician_id')
    if clinician_id is not UNSET:
        # Explicit null unassigns the patient.
        patient.clinician_id = get_active_clinician(clinician_id).id if clinician_id else None

    for name in PATIENT_FIELDS:
        value = field(data, name)
        if value is not UNSET:
            setattr(patient, name, value)

    db.session.commit()
    current_app.logger.info(f"Patient {patient.id} updated by {g.identity.account_id}")
    return jsonify({"message": "Patient updated successfully.", "patient": patient.to_dict()}), 200


@patients_bp.route('/<string:patient_id>', methods=['DELETE'])
@role_required(ROLE_ADMIN)
def delete_patient(patient_id):
    patient = get_or_404(Patient, patient_id, "patient")
    # Deleting the account cascades to profile, patient record, appointments and clinical records.
    db.session.delete(patient.user)
    db.session.commit()
    current_app.logger.info(f"Patient {patient_id} deleted by {g.identity.account_id}")
    return jsonify({"message": "Patient deleted successfully."}), 200
