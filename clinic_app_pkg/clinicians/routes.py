# clinic_app_pkg/clinicians/routes.py
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.orm import joinedload
from .. import db
from ..errors import ValidationError
from ..models import Clinician, User, Profile, ROLE_ADMIN, ROLE_CLINICIAN
from ..services import (
    provision_account, validate_password, get_or_404, normalize_email, ensure_email_available,
)
from ..utils import (
    role_required, get_json_payload, field, optional, require_fields, parse_amount, parse_bool, UNSET,
)

clinicians_bp = Blueprint('clinicians_bp', __name__)


def ensure_license_available(license_number, exclude_clinician_id=None):
    query = Clinician.query.filter(Clinician.license_number == license_number)
    if exclude_clinician_id:
        query = query.filter(Clinician.id != exclude_clinician_id)
    if query.first():
        raise ValidationError("license number already registered")


def _fee(value):
    return parse_amount(value, 'consultation_fee') if value is not None else None


@clinicians_bp.before_request
def ensure_json():
    if request.method in ['POST', 'PUT', 'PATCH'] and not request.is_json:
        return jsonify({"error": "Request body must be JSON."}), 415


@clinicians_bp.route('', methods=['GET'])
@role_required()
def list_clinicians():
    clinicians = Clinician.query.options(
        joinedload(Clinician.user).joinedload(User.profile)
    ).join(User, User.id == Clinician.user_id).join(Profile, Profile.user_id == User.id) \
        .order_by(Profile.name.asc()).all()
    return jsonify([c.to_dict() for c in clinicians]), 200


@clinicians_bp.route('', methods=['POST'])
@role_required(ROLE_ADMIN)
def create_clinician():
    data = get_json_payload()
    require_fields(data, 'name', 'email', 'password', 'license_number')
    password = validate_password(data['password'])
    license_number = optional(data, 'license_number')
    ensure_license_available(license_number)

    user = provision_account(
        email=data['email'],
        password=password,
        name=optional(data, 'name'),
        role=ROLE_CLINICIAN,
        phone=optional(data, 'phone'),
    )
    clinician = Clinician(
        license_number=license_number,
        specialty=optional(data, 'specialty'),
        bio=optional(data, 'bio'),
        consultation_fee=_fee(optional(data, 'consultation_fee')),
        active=True,
    )
    user.clinician = clinician
    db.session.commit()

    current_app.logger.info(f"Clinician {clinician.id} ({license_number}) provisioned for {user.email}")
    return jsonify({
        "message": "Clinician created successfully.",
        "id": clinician.id,
        "user_id": user.id,
    }), 201


@clinicians_bp.route('/<string:clinician_id>', methods=['PUT'])
@role_required(ROLE_ADMIN)
def update_clinician(clinician_id):
    clinician = get_or_404(Clinician, clinician_id, "clinician")
    user = clinician.user
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
        user.profile.name = name

    phone = field(data, 'phone')
    if phone is not UNSET:
        user.profile.phone = phone

    password = field(data, 'password')
    if password:
        user.set_password(validate_password(data['password']))

    license_number = field(data, 'license_number')
    if license_number is not UNSET:
        if license_number is None:
            raise ValidationError("license_number cannot be empty")
        ensure_license_available(license_number, exclude_clinician_id=clinician.id)
        clinician.license_number = license_number

    for attr in ('specialty', 'bio'):
        value = field(data, attr)
        if value is not UNSET:
            setattr(clinician, attr, value)

    fee = field(data, 'consultation_fee')
    if fee is not UNSET:
        clinician.consultation_fee = _fee(fee)

    active = field(data, 'active')
    if active is not UNSET:
        if active is None:
            raise ValidationError("active cannot be null")
        clinician.active = parse_bool(active, 'active')

    db.session.commit()
    current_app.logger.info(f"Clinician {clinician.id} updated by {g.identity.account_id}")
    return jsonify({"message": "Clinician updated successfully.", "clinician": clinician.to_dict()}), 200
