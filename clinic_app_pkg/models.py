from . import db # Imports the db instance from __init__.py
from werkzeug.security import generate_password_hash, check_password_hash
import datetime
import uuid


def utcnow():
    """Naive UTC timestamp, the convention for every DateTime column here."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def new_uuid():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


# --- Roles & workflow constants ---
ROLE_ADMIN = 'admin'
ROLE_ATTENDANT = 'attendant'
ROLE_CLINICIAN = 'clinician'
ROLE_PATIENT = 'patient'
ROLES = (ROLE_ADMIN, ROLE_ATTENDANT, ROLE_CLINICIAN, ROLE_PATIENT)
STAFF_ROLES = (ROLE_ADMIN, ROLE_ATTENDANT)

STATUS_SCHEDULED = 'scheduled'
STATUS_CONFIRMED = 'confirmed'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
APPOINTMENT_STATUSES = (
    STATUS_SCHEDULED, STATUS_CONFIRMED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED
)
ALLOWED_STATUS_TRANSITIONS = {
    STATUS_SCHEDULED: {STATUS_CONFIRMED, STATUS_IN_PROGRESS, STATUS_CANCELLED},
    STATUS_CONFIRMED: {STATUS_IN_PROGRESS, STATUS_CANCELLED},
    STATUS_IN_PROGRESS: {STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
}
DEFAULT_APPOINTMENT_DURATION = 50

TRANSACTION_INCOME = 'income'
TRANSACTION_EXPENSE = 'expense'
TRANSACTION_TYPES = (TRANSACTION_INCOME, TRANSACTION_EXPENSE)
TRANSACTION_PENDING = 'pending'
TRANSACTION_PAID = 'paid'
TRANSACTION_STATUSES = (TRANSACTION_PENDING, TRANSACTION_PAID)
SOURCE_MANUAL = 'manual'
SOURCE_AUTO = 'auto'

# --- Model Definitions ---

class User(db.Model):
    """An account. The role tag drives every authorization decision."""
    __tablename__ = 'users'
    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    hashed_password = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_PATIENT, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    profile = db.relationship('Profile', back_populates='user', uselist=False,
                              cascade='all, delete')
    patient = db.relationship('Patient', back_populates='user', uselist=False,
                              cascade='all, delete')
    clinician = db.relationship('Clinician', back_populates='user', uselist=False,
                                cascade='all, delete')
    sessions = db.relationship('AuthSession', back_populates='user',
                               cascade='all, delete')
    authored_records = db.relationship('ClinicalRecord', back_populates='author',
                                       foreign_keys='ClinicalRecord.created_by',
                                       cascade='all, delete')

    def set_password(self, password):
        # Werkzeug defaults to scrypt; check_password_hash compares in constant time.
        self.hashed_password = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.hashed_password, password)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name or (self.profile.name if self.profile else None),
            "role": self.role,
        }

    def __repr__(self):
        return f'<User {self.email} ({self.role})>'


class AuthSession(db.Model):
    """Opaque bearer token issued at login. Expiry is checked lazily on read."""
    __tablename__ = 'sessions'
    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', back_populates='sessions')

    @property
    def is_expired(self):
        return self.expires_at <= utcnow()

    def __repr__(self):
        return f'<AuthSession user:{self.user_id} expires:{self.expires_at}>'


class Profile(db.Model):
    __tablename__ = 'profiles'
    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(40), nullable=True)
    birth_date = db.Column(db.String(10), nullable=True) # YYYY-MM-DD as submitted
    document_number = db.Column(db.String(20), unique=True, nullable=True)
    avatar_url = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='profile')

    def to_dict(self):
        return {
            "name": self.name,
            "document_number": self.document_number,
            "phone": self.phone,
            "birth_date": self.birth_date,
        }


class Clinician(db.Model):
    __tablename__ = 'clinicians'
    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    license_number = db.Column(db.String(40), unique=True, nullable=False, index=True)
    specialty = db.Column(db.String(120), nullable=True)
    bio = db.Column(db.Text, nullable=True)
    consultation_fee = db.Column(db.Numeric(10, 2, asdecimal=False), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='clinician')
    assigned_patients = db.relationship('Patient', back_populates='clinician')
    appointments = db.relationship('Appointment', back_populates='clinician',
                                   cascade='all, delete')
    clinical_records = db.relationship('ClinicalRecord', back_populates='clinician',
                                       cascade='all, delete')
    transactions = db.relationship('Transaction', back_populates='clinician',
                                   cascade='all, delete')

    @property
    def name(self):
        return self.user.profile.name if self.user and self.user.profile else None

    def summary(self):
        return {"id": self.id, "name": self.name, "license_number": self.license_number}

    def to_dict(self):
        profile = self.user.profile if self.user else None
        return {
            "id": self.id,
            "user_id": self.user_id,
            "license_number": self.license_number,
            "specialty": self.specialty,
            "bio": self.bio,
            "consultation_fee": self.consultation_fee,
            "active": bool(self.active),
            "name": profile.name if profile else None,
            "phone": profile.phone if profile else None,
            "email": self.user.email if self.user else None,
        }

    def __repr__(self):
        return f'<Clinician {self.license_number}>'


class Patient(db.Model):
    __tablename__ = 'patients'
    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    clinician_id = db.Column(db.String(36), db.ForeignKey('clinicians.id', ondelete='SET NULL'), nullable=True, index=True)
    address = db.Column(db.Text, nullable=True)
    emergency_contact = db.Column(db.String(255), nullable=True)
    insurance = db.Column(db.String(120), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    medication = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='patient')
    clinician = db.relationship('Clinician', back_populates='assigned_patients')
    appointments = db.relationship('Appointment', back_populates='patient',
                                   cascade='all, delete')
    clinical_records = db.relationship('ClinicalRecord', back_populates='patient',
                                       cascade='all, delete')

    @property
    def name(self):
        return self.user.profile.name if self.user and self.user.profile else None

    def to_dict(self):
        profile = self.user.profile if self.user else None
        return {
            "id": self.id,
            "user_id": self.user_id,
            "clinician_id": self.clinician_id,
            "address": self.address,
            "emergency_contact": self.emergency_contact,
            "insurance": self.insurance,
            "notes": self.notes,
            "medication": self.medication,
            "email": self.user.email if self.user else None,
            "created_at": _iso(self.created_at),
            "profile": profile.to_dict() if profile else None,
            "clinician": self.clinician.summary() if self.clinician else None,
        }

    def __repr__(self):
        return f'<Patient {self.id}>'


class Appointment(db.Model):
    __tablename__ = 'appointments'

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    clinician_id = db.Column(db.String(36), db.ForeignKey('clinicians.id', ondelete='CASCADE'), nullable=False, index=True)
    patient_id = db.Column(db.String(36), db.ForeignKey('patients.id', ondelete='CASCADE'), nullable=False, index=True)
    scheduled_at = db.Column(db.DateTime, nullable=False, index=True)
    duration_minutes = db.Column(db.Integer, nullable=False, default=DEFAULT_APPOINTMENT_DURATION)
    status = db.Column(
        db.String(20),
        nullable=False,
        default=STATUS_SCHEDULED,
        index=True,
        comment="Valid values: scheduled, confirmed, in_progress, completed, cancelled"
    )
    notes = db.Column(db.Text, nullable=True)
    fee = db.Column(db.Numeric(10, 2, asdecimal=False), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    clinician = db.relationship('Clinician', back_populates='appointments')
    patient = db.relationship('Patient', back_populates='appointments')
    # Deleting an appointment nulls these references instead of deleting the rows.
    transactions = db.relationship('Transaction', back_populates='appointment')
    clinical_records = db.relationship('ClinicalRecord', back_populates='appointment')

    def to_dict(self, include_related=True):
        data = {
            "id": self.id,
            "clinician_id": self.clinician_id,
            "patient_id": self.patient_id,
            "scheduled_at": _iso(self.scheduled_at),
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "notes": self.notes,
            "fee": self.fee,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_related:
            patient_profile = self.patient.user.profile if self.patient and self.patient.user else None
            data.update({
                "patient_user_id": self.patient.user_id if self.patient else None,
                "patient_name": patient_profile.name if patient_profile else None,
                "patient_phone": patient_profile.phone if patient_profile else None,
                "clinician_name": self.clinician.name if self.clinician else None,
                "clinician_license": self.clinician.license_number if self.clinician else None,
            })
        return data

    def __repr__(self):
        return f'<Appointment {self.id} {self.status} at {self.scheduled_at}>'


class ClinicalRecord(db.Model):
    __tablename__ = 'clinical_records'
    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    patient_id = db.Column(db.String(36), db.ForeignKey('patients.id', ondelete='CASCADE'), nullable=False, index=True)
    clinician_id = db.Column(db.String(36), db.ForeignKey('clinicians.id', ondelete='CASCADE'), nullable=False, index=True)
    appointment_id = db.Column(db.String(36), db.ForeignKey('appointments.id', ondelete='SET NULL'), nullable=True)
    session_date = db.Column(db.String(10), nullable=False)
    record_type = db.Column(db.String(40), nullable=False, default='session')
    notes = db.Column(db.Text, nullable=True)
    progress = db.Column(db.Text, nullable=True)
    plan = db.Column(db.Text, nullable=True)
    next_session = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    patient = db.relationship('Patient', back_populates='clinical_records')
    clinician = db.relationship('Clinician', back_populates='clinical_records')
    appointment = db.relationship('Appointment', back_populates='clinical_records')
    author = db.relationship('User', back_populates='authored_records', foreign_keys=[created_by])

    def to_dict(self):
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "clinician_id": self.clinician_id,
            "appointment_id": self.appointment_id,
            "session_date": self.session_date,
            "record_type": self.record_type,
            "notes": self.notes,
            "progress": self.progress,
            "plan": self.plan,
            "next_session": self.next_session,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "clinician_name": self.clinician.name if self.clinician else None,
            "created_by_name": self.author.name if self.author else None,
        }


class Transaction(db.Model):
    __tablename__ = 'transactions'
    __table_args__ = (
        # At most one auto-generated transaction per appointment.
        db.Index(
            'uq_transactions_auto_appointment', 'appointment_id', unique=True,
            sqlite_where=db.text("source = 'auto'"),
            postgresql_where=db.text("source = 'auto'"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    appointment_id = db.Column(db.String(36), db.ForeignKey('appointments.id', ondelete='SET NULL'), nullable=True)
    clinician_id = db.Column(db.String(36), db.ForeignKey('clinicians.id', ondelete='CASCADE'), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False, default=TRANSACTION_INCOME)
    description = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Numeric(10, 2, asdecimal=False), nullable=False)
    transaction_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=TRANSACTION_PENDING)
    notes = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(10), nullable=False, default=SOURCE_MANUAL)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    clinician = db.relationship('Clinician', back_populates='transactions')
    appointment = db.relationship('Appointment', back_populates='transactions')

    def to_dict(self):
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "clinician_id": self.clinician_id,
            "type": self.type,
            "description": self.description,
            "amount": self.amount,
            "transaction_date": _iso(self.transaction_date),
            "status": self.status,
            "notes": self.notes,
            "source": self.source,
            "created_at": _iso(self.created_at),
            "clinician_name": self.clinician.name if self.clinician else None,
            "appointment_scheduled_at": _iso(self.appointment.scheduled_at) if self.appointment else None,
        }

    def __repr__(self):
        return f'<Transaction {self.type} {self.amount} ({self.status})>'
