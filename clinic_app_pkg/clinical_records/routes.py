# clinic_app_pkg/clinical_records/routes.py
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.orm import joinedload
from .. import db
from ..errors import ValidationError, AuthorizationError, NotFoundError
from ..models import (
    ClinicalRecord, Appointment, Clinician, User,
    ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN,
)
from ..services import get_patient, get_active_clinician, get_or_404, get_reference
from ..utils import role_required, get_json_payload, field, optional, require_fields, parse_date, UNSET

clinical_records_bp = Blueprint('clinical_records_bp', __name__)

DEFAULT_RECORD_TYPE = 'session'
EDITABLE_FIELDS = ('notes', 'progress', 'plan', 'next_session')


@clinical_records_bp.before_request
def ensure_json():
    if request.method in ['POST', 'PUT', 'PATCH'] and not request.is_json:
        return jsonify({"error": "Request body must be JSON."}), 415


@clinical_records_bp.route('/patient/<string:patient_id>', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN)
def list_patient_records(patient_id):
    identity = g.identity
    patient = get_patient(patient_id, error_cls=NotFoundError)

    query = ClinicalRecord.query.options(
        joinedload(ClinicalRecord.clinician).joinedload(Clinician.user).joinedload(User.profile),
        joinedload(ClinicalRecord.author).joinedload(User.profile),
    ).filter(ClinicalRecord.patient_id == patient.id)
    if identity.is_clinician:
        # Clinicians only read the records they own, even for a shared patient.
        query = query.filter(ClinicalRecord.clinician_id == identity.clinician_id)

    records = query.order_by(ClinicalRecord.session_date.desc(), ClinicalRecord.created_at.desc()).all()
    return jsonify([r.to_dict() for r in records]), 200


@clinical_records_bp.route('/patient/<string:patient_id>', methods=['POST'])
@role_required(ROLE_ADMIN, ROLE_CLINICIAN)
def create_record(patient_id):
    identity = g.identity
    data = get_json_payload()
    patient = get_patient(patient_id)

    clinician_id = optional(data, 'clinician_id')
    if clinician_id is None and identity.is_clinician:
        clinician_id = identity.clinician_id
    clinician = get_active_clinician(clinician_id)
    if identity.is_clinician and clinician.id != identity.clinician_id:
        current_app.logger.warning(
            f"User {identity.account_id} tried to write a record for clinician {clinician.id}"
        )
        raise AuthorizationError("You can only create records for your own patients.")

    require_fields(data, 'session_date')
    session_date = optional(data, 'session_date')
    parse_date(session_date, 'session_date')

    appointment_id = optional(data, 'appointment_id')
    if appointment_id:
        appointment = get_reference(Appointment, appointment_id, 'appointment_id')
        if not appointment or appointment.patient_id != patient.id:
            raise ValidationError("appointment not found for this patient")

    record = ClinicalRecord(
        patient_id=patient.id,
        clinician_id=clinician.id,
        appointment_id=appointment_id,
        session_date=session_date,
        record_type=optional(data, 'record_type') or DEFAULT_RECORD_TYPE,
        created_by=identity.account_id,
        **{name: optional(data, name) for name in EDITABLE_FIELDS}
    )
    db.session.add(record)
    db.session.commit()

    current_app.logger.info(
        f"Clinical record {record.id} created for patient {patient.id} by {identity.account_id}"
    )
    return jsonify({"message": "Clinical record created successfully.", "id": record.id}), 201


@clinical_records_bp.route('/<string:record_id>', methods=['PUT'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN)
def update_record(record_id):
    identity = g.identity
    record = get_or_404(ClinicalRecord, record_id, "clinical record")
    data = get_json_payload()

    if identity.is_clinician and record.clinician_id != identity.clinician_id \
            and record.created_by != identity.account_id:
        current_app.logger.warning(f"User {identity.account_id} denied edit on clinical record {record.id}")
        raise AuthorizationError("You do not have permission to edit this clinical record.")

    for name in EDITABLE_FIELDS:
        value = field(data, name)
        if value is not UNSET:
            setattr(record, name, value)

    db.session.commit()
    current_app.logger.info(f"Clinical record {record.id} updated by {identity.account_id}")
    return jsonify({"message": "Clinical record updated successfully.", "record": record.to_dict()}), 200
