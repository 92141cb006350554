# clinic_app_pkg/dashboard/routes.py
from flask import Blueprint, jsonify, current_app, g
from sqlalchemy import func
from sqlalchemy.orm import joinedload
from .. import db
from ..models import (
    Patient, Clinician, Appointment, ClinicalRecord, Transaction, User,
    ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN,
    STATUS_COMPLETED, STATUS_CANCELLED, TRANSACTION_INCOME, TRANSACTION_PAID, utcnow,
)
from ..services import scope_appointments, visible_patients_query
from ..utils import role_required, today_bounds

dashboard_bp = Blueprint('dashboard_bp', __name__)

MY_PATIENTS_LIMIT = 10


def scoped_appointments():
    return scope_appointments(Appointment.query.options(
        joinedload(Appointment.patient).joinedload(Patient.user).joinedload(User.profile),
        joinedload(Appointment.clinician).joinedload(Clinician.user).joinedload(User.profile),
    ), g.identity)


def _rate(part, whole):
    return round(part * 100.0 / whole, 2) if whole else 0


def _per_clinician(key, value, filters=()):
    """{clinician_id: aggregate} for one grouped query over a clinician-owned table."""
    rows = db.session.query(key, value).filter(*filters).group_by(key).all()
    return {clinician_id: result for clinician_id, result in rows}


@dashboard_bp.route('/stats', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN)
def get_stats():
    """Headline counters, scoped to the caller for clinicians."""
    identity = g.identity
    start, end = today_bounds()

    appointments = scope_appointments(Appointment.query, identity)
    stats = {
        "total_clinicians": 0,
        "total_patients": visible_patients_query(identity).count(),
        "total_appointments": appointments.count(),
        "appointments_today": appointments.filter(
            Appointment.scheduled_at >= start, Appointment.scheduled_at < end
        ).count(),
    }
    if not identity.is_clinician:
        stats["total_clinicians"] = Clinician.query.filter_by(active=True).count()
    return jsonify(stats), 200


@dashboard_bp.route('/today', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN)
def todays_appointments():
    start, end = today_bounds()
    appointments = scoped_appointments().filter(
        Appointment.scheduled_at >= start, Appointment.scheduled_at < end
    ).order_by(Appointment.scheduled_at.asc()).all()
    return jsonify([a.to_dict(include_related=True) for a in appointments]), 200


@dashboard_bp.route('/upcoming', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN)
def upcoming_appointments():
    limit = current_app.config.get('UPCOMING_APPOINTMENTS_LIMIT', 10)
    appointments = scoped_appointments().filter(
        Appointment.scheduled_at >= utcnow()
    ).order_by(Appointment.scheduled_at.asc()).limit(limit).all()
    return jsonify([a.to_dict(include_related=True) for a in appointments]), 200


@dashboard_bp.route('/my-patients', methods=['GET'])
@role_required(ROLE_CLINICIAN)
def my_patients():
    patients = visible_patients_query(g.identity).options(
        joinedload(Patient.user).joinedload(User.profile),
        joinedload(Patient.clinician).joinedload(Clinician.user).joinedload(User.profile),
    ).order_by(Patient.created_at.desc()).limit(MY_PATIENTS_LIMIT).all()
    return jsonify([p.to_dict() for p in patients]), 200


@dashboard_bp.route('/performance', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT)
def clinician_performance():
    """
    Per active clinician: caseload, appointment outcomes, records written and
    paid income. Each figure comes from its own grouped query so the joins
    never multiply one another's rows.
    """
    clinicians = Clinician.query.options(
        joinedload(Clinician.user).joinedload(User.profile)
    ).filter_by(active=True).all()

    patients = _per_clinician(Patient.clinician_id, func.count(Patient.id))
    appointments = _per_clinician(Appointment.clinician_id, func.count(Appointment.id))
    completed = _per_clinician(
        Appointment.clinician_id, func.count(Appointment.id),
        filters=(Appointment.status == STATUS_COMPLETED,),
    )
    cancelled = _per_clinician(
        Appointment.clinician_id, func.count(Appointment.id),
        filters=(Appointment.status == STATUS_CANCELLED,),
    )
    average_duration = _per_clinician(
        Appointment.clinician_id, func.avg(Appointment.duration_minutes),
        filters=(Appointment.status == STATUS_COMPLETED,),
    )
    records = _per_clinician(ClinicalRecord.clinician_id, func.count(ClinicalRecord.id))
    income = _per_clinician(
        Transaction.clinician_id, func.sum(Transaction.amount),
        filters=(Transaction.type == TRANSACTION_INCOME, Transaction.status == TRANSACTION_PAID),
    )

    performance = []
    for clinician in clinicians:
        total = appointments.get(clinician.id, 0)
        done = completed.get(clinician.id, 0)
        dropped = cancelled.get(clinician.id, 0)
        avg = average_duration.get(clinician.id)
        performance.append({
            "clinician_id": clinician.id,
            "clinician_name": clinician.name,
            "license_number": clinician.license_number,
            "total_patients": patients.get(clinician.id, 0),
            "total_appointments": total,
            "completed_appointments": done,
            "cancelled_appointments": dropped,
            "total_clinical_records": records.get(clinician.id, 0),
            "paid_income": round(float(income.get(clinician.id) or 0), 2),
            "average_duration": round(float(avg), 2) if avg is not None else None,
            "completion_rate": _rate(done, total),
            "cancellation_rate": _rate(dropped, total),
        })

    performance.sort(key=lambda row: row["total_appointments"], reverse=True)
    return jsonify(performance), 200
