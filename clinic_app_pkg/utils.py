# clinic_app_pkg/utils.py
import datetime
import secrets
from collections import namedtuple
from functools import wraps
from flask import request, current_app, g
from . import db
from .errors import AuthenticationError, AuthorizationError, ValidationError
from .models import User, AuthSession, Clinician, ROLE_CLINICIAN, utcnow

class Identity(namedtuple('Identity', ['account_id', 'role', 'clinician_id'])):
    """Who is calling, resolved from the bearer token on every request."""
    __slots__ = ()

    @property
    def is_clinician(self):
        return self.role == ROLE_CLINICIAN


class _Unset:
    """Marks a payload field that was not sent at all (as opposed to sent as null)."""

    def __bool__(self):
        return False

    def __repr__(self):
        return 'UNSET'


UNSET = _Unset()


# --- Session Token Helper Functions ---
def create_session(user):
    """Issues a new opaque session token for the user. The caller commits."""
    expires_at = utcnow() + datetime.timedelta(days=current_app.config.get('SESSION_TOKEN_EXPIRATION_DAYS', 7))
    session = AuthSession(user_id=user.id, token=secrets.token_urlsafe(32), expires_at=expires_at)
    db.session.add(session)
    return session


def get_bearer_token():
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        token = auth_header[len('Bearer '):].strip()
        return token or None
    return None


def resolve_session(token):
    """Returns the live AuthSession for a token or raises AuthenticationError."""
    if not token:
        raise AuthenticationError("authentication required")
    session = AuthSession.query.filter_by(token=token).first()
    if not session or not session.user:
        raise AuthenticationError("invalid session token")
    if session.is_expired:
        current_app.logger.info(f"Expired session used by user {session.user_id}")
        raise AuthenticationError("session expired")
    return session


def resolve_identity(token):
    """
    Derives (account_id, role, clinician_id) from a bearer token.
    Raises AuthenticationError when the token is missing, unknown or expired.
    """
    session = resolve_session(token)
    user = session.user
    clinician = Clinician.query.filter_by(user_id=user.id).first()
    return Identity(account_id=user.id, role=user.role, clinician_id=clinician.id if clinician else None)


def role_required(*allowed_roles):
    """
    Resolves the caller once per request and stores it on g.identity.
    With no roles listed, any authenticated caller is accepted.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            identity = resolve_identity(get_bearer_token())
            if allowed_roles and identity.role not in allowed_roles:
                current_app.logger.warning(
                    f"Access denied for user {identity.account_id} ({identity.role}) on {request.endpoint}"
                )
                raise AuthorizationError("insufficient permissions for this operation")
            g.identity = identity
            return f(*args, **kwargs)
        return decorated_function
    return decorator


# --- Request payload helpers ---
def get_json_payload():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be JSON.")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def field(data, key):
    """Payload value, or UNSET when the key is absent. Empty strings count as null."""
    if key not in data:
        return UNSET
    value = data[key]
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def optional(data, key):
    """Like field(), but collapses absent into None (for creates)."""
    value = field(data, key)
    return None if value is UNSET else value


def require_fields(data, *keys):
    missing = [k for k in keys if optional(data, k) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def parse_iso_datetime(dt_str, field_name='datetime'):
    """Helper: Parse ISO string into a naive UTC datetime or raise ValidationError."""
    if not dt_str or not isinstance(dt_str, str):
        raise ValidationError(f"Invalid {field_name}. Use ISO format.")
    try:
        value = datetime.datetime.fromisoformat(dt_str.replace('Z', '+00:00'))
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid {field_name}. Use ISO format.")
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value


def parse_date(date_str, field_name='date'):
    """Helper: Parse YYYY-MM-DD or raise ValidationError."""
    if isinstance(date_str, datetime.date):
        return date_str
    try:
        return datetime.datetime.strptime(date_str, '%Y-%m-%d').date()
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid {field_name} format. Use YYYY-MM-DD.")


def parse_amount(value, field_name='amount', allow_zero=True):
    """Helper: non-negative number (or positive when allow_zero is False)."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number.")
    try:
        amount = round(float(value), 2)
    except (ValueError, TypeError):
        raise ValidationError(f"{field_name} must be a number.")
    if amount < 0 or (not allow_zero and amount == 0):
        raise ValidationError(f"{field_name} must be {'non-negative' if allow_zero else 'positive'}.")
    return amount


def parse_bool(value, field_name):
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.lower() in ('true', 'false', '1', '0'):
        return value.lower() in ('true', '1')
    raise ValidationError(f"{field_name} must be a boolean.")


def current_date():
    """Today's date in UTC, the same clock the timestamps use."""
    return utcnow().date()


def today_bounds(today=None):
    """[start, end) datetimes of the given (default: current) day."""
    today = today or current_date()
    start = datetime.datetime.combine(today, datetime.time.min)
    return start, start + datetime.timedelta(days=1)


def get_user_by_email(email, exclude_user_id=None):
    query = User.query.filter(User.email == email)
    if exclude_user_id:
        query = query.filter(User.id != exclude_user_id)
    return query.first()
