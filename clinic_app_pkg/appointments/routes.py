# clinic_app_pkg/appointments/routes.py
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.orm import joinedload
from .. import db
from ..errors import ValidationError, AuthorizationError
from ..models import (
    Appointment, Patient, Clinician, User,
    ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN,
    APPOINTMENT_STATUSES, ALLOWED_STATUS_TRANSITIONS, STATUS_SCHEDULED, STATUS_COMPLETED,
    DEFAULT_APPOINTMENT_DURATION,
)
from ..services import (
    get_patient, get_active_clinician, get_or_404, scope_appointments,
    assign_clinician_if_unassigned, record_appointment_income,
)
from ..utils import (
    role_required, get_json_payload, optional, require_fields,
    parse_iso_datetime, parse_date, parse_amount, today_bounds,
)

appointments_bp = Blueprint('appointments_bp', __name__)


def appointment_query():
    """Appointments with the patient/clinician joins every listing needs."""
    return Appointment.query.options(
        joinedload(Appointment.patient).joinedload(Patient.user).joinedload(User.profile),
        joinedload(Appointment.clinician).joinedload(Clinician.user).joinedload(User.profile),
    )


def validate_status(status):
    if not status:
        raise ValidationError("status is required")
    if status not in APPOINTMENT_STATUSES:
        raise ValidationError(f"invalid status. Valid values: {', '.join(APPOINTMENT_STATUSES)}")
    return status


def check_transition(current_status, new_status):
    """Completed and cancelled are terminal; re-applying the current status is a no-op."""
    if current_status == new_status or not current_app.config.get('ENFORCE_STATUS_TRANSITIONS', True):
        return
    if new_status not in ALLOWED_STATUS_TRANSITIONS.get(current_status, set()):
        raise ValidationError(f"invalid status transition from {current_status} to {new_status}")


def parse_duration(value):
    if value is None:
        return DEFAULT_APPOINTMENT_DURATION
    try:
        duration = int(value)
    except (ValueError, TypeError):
        raise ValidationError("duration_minutes must be an integer.")
    if duration <= 0:
        raise ValidationError("duration_minutes must be positive.")
    return duration


@appointments_bp.before_request
def ensure_json():
    if request.method in ['POST', 'PUT', 'PATCH'] and not request.is_json:
        return jsonify({"error": "Request body must be JSON."}), 415


@appointments_bp.route('', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN)
def list_appointments():
    identity = g.identity
    query = scope_appointments(appointment_query(), identity)

    status_filter = request.args.get('status')
    patient_id_filter = request.args.get('patient_id')
    clinician_id_filter = request.args.get('clinician_id')
    start_date_str = request.args.get('start_date')
    end_date_str = request.args.get('end_date')

    if status_filter:
        query = query.filter(Appointment.status == validate_status(status_filter))
    if patient_id_filter:
        query = query.filter(Appointment.patient_id == patient_id_filter)
    if clinician_id_filter and not identity.is_clinician:
        query = query.filter(Appointment.clinician_id == clinician_id_filter)
    if start_date_str:
        start_dt, _ = today_bounds(parse_date(start_date_str, 'start_date'))
        query = query.filter(Appointment.scheduled_at >= start_dt)
    if end_date_str:
        _, end_dt = today_bounds(parse_date(end_date_str, 'end_date'))
        query = query.filter(Appointment.scheduled_at < end_dt)

    appointments = query.order_by(Appointment.scheduled_at.desc()).all()
    return jsonify([a.to_dict(include_related=True) for a in appointments]), 200


@appointments_bp.route('', methods=['POST'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT)
def create_appointment():
    data = get_json_payload()
    require_fields(data, 'patient_id', 'clinician_id', 'scheduled_at')

    patient = get_patient(data['patient_id'])
    clinician = get_active_clinician(data['clinician_id'])
    scheduled_at = parse_iso_datetime(data['scheduled_at'], 'scheduled_at')
    status = validate_status(optional(data, 'status') or STATUS_SCHEDULED)
    fee = optional(data, 'fee')

    appointment = Appointment(
        patient_id=patient.id,
        clinician_id=clinician.id,
        scheduled_at=scheduled_at,
        duration_minutes=parse_duration(optional(data, 'duration_minutes')),
        status=status,
        notes=optional(data, 'notes'),
        fee=parse_amount(fee, 'fee') if fee is not None else None,
    )
    db.session.add(appointment)
    assign_clinician_if_unassigned(patient, clinician)
    db.session.commit()

    current_app.logger.info(
        f"Appointment {appointment.id} created for patient {patient.id} with clinician {clinician.id}"
    )
    return jsonify({
        "message": "Appointment created successfully.",
        "id": appointment.id,
        "appointment": appointment.to_dict(include_related=True)
    }), 201


@appointments_bp.route('/<string:appointment_id>/status', methods=['PUT'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN)
def update_appointment_status(appointment_id):
    identity = g.identity
    appointment = get_or_404(Appointment, appointment_id, "appointment")
    data = get_json_payload()
    new_status = validate_status(optional(data, 'status'))

    if identity.is_clinician and appointment.clinician_id != identity.clinician_id:
        current_app.logger.warning(
            f"Clinician {identity.clinician_id} tried to update appointment {appointment.id}"
        )
        raise AuthorizationError("You do not have permission to update this appointment.")

    previous_status = appointment.status
    check_transition(previous_status, new_status)
    appointment.status = new_status

    transaction = None
    if new_status == STATUS_COMPLETED:
        transaction = record_appointment_income(appointment)
    db.session.commit()

    current_app.logger.info(f"Appointment {appointment.id} status {previous_status} -> {new_status}")
    return jsonify({
        "message": "Status updated successfully.",
        "appointment": appointment.to_dict(include_related=True),
        "transaction": transaction.to_dict() if transaction else None,
    }), 200
