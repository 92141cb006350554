# clinic_app_pkg/auth/routes.py
from flask import Blueprint, jsonify, current_app
from .. import db
from ..errors import AuthenticationError, ValidationError
from ..models import User, AuthSession, Patient, ROLE_PATIENT
from ..services import provision_account, validate_password, normalize_email
from ..utils import (
    create_session, get_bearer_token, resolve_session, get_json_payload, optional, require_fields
)

auth_bp = Blueprint('auth_bp', __name__)


def _session_payload(user, session):
    return {
        "user": user.to_dict(),
        "token": session.token,
        "expires_at": session.expires_at.isoformat(),
    }


@auth_bp.route('/login', methods=['POST'])
def login():
    data = get_json_payload()
    email = optional(data, 'email')
    password = data.get('password')
    if not isinstance(email, str) or not isinstance(password, str) or not password:
        raise ValidationError("Email and password are required.")

    user = User.query.filter_by(email=email.lower()).first()
    if not user or not user.check_password(password):
        current_app.logger.warning(f"Failed login attempt for email: {email}")
        raise AuthenticationError("invalid credentials")

    session = create_session(user)
    db.session.commit()

    current_app.logger.info(f"User '{user.email}' logged in successfully.")
    return jsonify(_session_payload(user, session)), 200


@auth_bp.route('/register', methods=['POST'])
def register():
    """Self-registration always provisions a patient account."""
    data = get_json_payload()
    require_fields(data, 'email', 'password', 'name')
    password = validate_password(data['password'])

    user = provision_account(
        email=normalize_email(data['email']),
        password=password,
        name=optional(data, 'name'),
        role=ROLE_PATIENT,
    )
    user.patient = Patient()
    db.session.commit()

    current_app.logger.info(f"New user registered: {user.email}")
    return jsonify({"message": "User registered successfully.", "user_id": user.id}), 201


@auth_bp.route('/session', methods=['GET'])
def get_session():
    session = resolve_session(get_bearer_token())
    return jsonify(_session_payload(session.user, session)), 200


@auth_bp.route('/logout', methods=['POST'])
def logout():
    """Idempotent: unknown or missing tokens still log out successfully."""
    token = get_bearer_token()
    if token:
        session = AuthSession.query.filter_by(token=token).first()
        if session:
            user_id = session.user_id
            db.session.delete(session)
            db.session.commit()
            current_app.logger.info(f"User {user_id} logged out.")
    return jsonify({"message": "Logged out successfully."}), 200
