# clinic_app_pkg/services.py
# Internal helper/service functions shared by the blueprints.
# None of these commit: the route owns the unit of work and commits once.

from flask import current_app
from sqlalchemy import or_, false
from sqlalchemy.exc import IntegrityError
from . import db
from .errors import ValidationError, NotFoundError
from .models import (
    User, Profile, Patient, Clinician, Appointment, Transaction,
    ROLE_ADMIN, TRANSACTION_INCOME, TRANSACTION_PAID, SOURCE_AUTO,
)
from .utils import get_user_by_email, current_date

MIN_PASSWORD_LENGTH = 8
AUTO_TRANSACTION_DESCRIPTION = "service rendered"


# --- Account Provisioning ---

def normalize_email(email):
    if not isinstance(email, str) or '@' not in email:
        raise ValidationError("A valid email is required.")
    return email.strip().lower()


def validate_password(password):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    return password


def ensure_email_available(email, exclude_user_id=None):
    if get_user_by_email(email, exclude_user_id=exclude_user_id):
        raise ValidationError("email already registered")


def ensure_document_available(document_number, exclude_user_id=None):
    if not document_number:
        return
    query = Profile.query.filter(Profile.document_number == document_number)
    if exclude_user_id:
        query = query.filter(Profile.user_id != exclude_user_id)
    if query.first():
        raise ValidationError("document number already registered")


def provision_account(email, password, name, role, phone=None, birth_date=None, document_number=None):
    """
    Adds a User and its Profile to the session. The caller attaches the
    role record (Patient / Clinician) and commits everything at once.
    """
    email = normalize_email(email)
    if not name:
        raise ValidationError("name is required")
    ensure_email_available(email)
    ensure_document_available(document_number)

    user = User(email=email, name=name, role=role)
    user.set_password(password)
    user.profile = Profile(name=name, phone=phone, birth_date=birth_date, document_number=document_number)
    db.session.add(user)
    return user


def seed_default_admin():
    """Creates the configured administrator on first initialization."""
    email = current_app.config['DEFAULT_ADMIN_EMAIL'].lower()
    if User.query.filter_by(email=email).first():
        return None
    name = current_app.config.get('DEFAULT_ADMIN_NAME', 'Administrator')
    admin = User(email=email, name=name, role=ROLE_ADMIN)
    admin.set_password(current_app.config['DEFAULT_ADMIN_PASSWORD'])
    admin.profile = Profile(name=name)
    db.session.add(admin)
    db.session.commit()
    current_app.logger.warning(
        f"Default administrator created: {email}. Rotate its password before production use."
    )
    return admin


# --- Reference Lookups ---

def get_reference(model, object_id, field_name):
    """Primary-key lookup for an id taken from a payload; ids are always strings."""
    if object_id is None:
        return None
    if not isinstance(object_id, str):
        raise ValidationError(f"{field_name} must be a string.")
    return db.session.get(model, object_id)


def get_patient(patient_id, error_cls=ValidationError):
    patient = get_reference(Patient, patient_id, 'patient_id') if patient_id else None
    if not patient:
        raise error_cls("patient not found")
    return patient


def get_active_clinician(clinician_id):
    """Only active clinicians may be booked, assigned or referenced by new records."""
    clinician = get_reference(Clinician, clinician_id, 'clinician_id') if clinician_id else None
    if not clinician or not clinician.active:
        raise ValidationError("clinician not found or inactive")
    return clinician


def get_or_404(model, object_id, label):
    obj = get_reference(model, object_id, 'id')
    if not obj:
        raise NotFoundError(f"{label} not found")
    return obj


# --- Role Scoping ---

def scope_appointments(query, identity):
    """Clinicians only ever see their own appointments."""
    if identity.is_clinician:
        if not identity.clinician_id:
            return query.filter(false())
        return query.filter(Appointment.clinician_id == identity.clinician_id)
    return query


def visible_patients_query(identity):
    """
    Staff see every patient; a clinician sees patients assigned to them or
    with at least one appointment with them.
    """
    query = Patient.query
    if identity.is_clinician:
        if not identity.clinician_id:
            return query.filter(false())
        booked = db.session.query(Appointment.patient_id).filter(
            Appointment.clinician_id == identity.clinician_id
        )
        query = query.filter(or_(
            Patient.clinician_id == identity.clinician_id,
            Patient.id.in_(booked)
        ))
    return query


# --- Cross-Entity Consistency ---

def assign_clinician_if_unassigned(patient, clinician):
    """First writer wins: an existing assignment is never overwritten here."""
    if patient.clinician_id is None:
        patient.clinician_id = clinician.id
        current_app.logger.info(f"Patient {patient.id} assigned to clinician {clinician.id}")
        return True
    return False


def find_appointment_transaction(appointment_id):
    return Transaction.query.filter_by(appointment_id=appointment_id).first()


def record_appointment_income(appointment):
    """
    Creates the paid income transaction for a completed appointment.
    Returns the new Transaction, or None when there is no fee or one already exists.
    """
    if appointment.fee is None:
        return None
    if find_appointment_transaction(appointment.id):
        return None

    transaction = Transaction(
        appointment_id=appointment.id,
        clinician_id=appointment.clinician_id,
        type=TRANSACTION_INCOME,
        description=AUTO_TRANSACTION_DESCRIPTION,
        amount=appointment.fee,
        transaction_date=current_date(),
        status=TRANSACTION_PAID,
        source=SOURCE_AUTO,
    )
    try:
        # A concurrent completion trips the partial unique index instead of double-inserting.
        with db.session.begin_nested():
            db.session.add(transaction)
    except IntegrityError:
        current_app.logger.info(f"Income for appointment {appointment.id} already recorded concurrently.")
        return None
    current_app.logger.info(f"Income transaction created for appointment {appointment.id}: {appointment.fee}")
    return transaction
