# clinic_app_pkg/financial/routes.py
from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy import func, case
from sqlalchemy.orm import joinedload
from .. import db
from ..errors import ValidationError
from ..models import (
    Transaction, Clinician, Appointment, User, Profile,
    ROLE_ADMIN, ROLE_ATTENDANT,
    TRANSACTION_TYPES, TRANSACTION_STATUSES, TRANSACTION_INCOME, TRANSACTION_EXPENSE,
    TRANSACTION_PENDING, TRANSACTION_PAID, SOURCE_MANUAL,
)
from ..services import get_reference
from ..utils import (
    role_required, get_json_payload, optional, require_fields, parse_date, parse_amount, current_date,
)

financial_bp = Blueprint('financial_bp', __name__)


def parse_date_range(args):
    """Inclusive (start, end) dates from the query string; either side may be None."""
    start_date_str = args.get('start_date')
    end_date_str = args.get('end_date')
    start_date = parse_date(start_date_str, 'start_date') if start_date_str else None
    end_date = parse_date(end_date_str, 'end_date') if end_date_str else None
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must be on or after start_date.")
    return start_date, end_date


def filter_transactions(query, start_date=None, end_date=None, clinician_id=None):
    if start_date:
        query = query.filter(Transaction.transaction_date >= start_date)
    if end_date:
        query = query.filter(Transaction.transaction_date <= end_date)
    if clinician_id:
        query = query.filter(Transaction.clinician_id == clinician_id)
    return query


def _choice(value, choices, field_name):
    if value not in choices:
        raise ValidationError(f"invalid {field_name}. Valid values: {', '.join(choices)}")
    return value


@financial_bp.before_request
def ensure_json():
    if request.method in ['POST', 'PUT', 'PATCH'] and not request.is_json:
        return jsonify({"error": "Request body must be JSON."}), 415


@financial_bp.route('/report', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT)
def financial_report():
    start_date, end_date = parse_date_range(request.args)
    clinician_id = request.args.get('clinician_id')

    totals = filter_transactions(
        db.session.query(
            Transaction.type,
            func.coalesce(func.sum(Transaction.amount), 0).label('total'),
            func.count(Transaction.id).label('count'),
        ).filter(Transaction.status == TRANSACTION_PAID),
        start_date, end_date, clinician_id,
    ).group_by(Transaction.type).all()
    summary = {t: {"total": 0.0, "count": 0} for t in TRANSACTION_TYPES}
    for tx_type, total, count in totals:
        if tx_type in summary:
            summary[tx_type] = {"total": round(float(total), 2), "count": count}

    def paid_sum(tx_type):
        return func.coalesce(func.sum(case((Transaction.type == tx_type, Transaction.amount), else_=0)), 0)

    def paid_count(tx_type):
        return func.count(case((Transaction.type == tx_type, Transaction.id)))

    breakdown_rows = filter_transactions(
        db.session.query(
            Clinician.id,
            Profile.name,
            paid_sum(TRANSACTION_INCOME).label('income_total'),
            paid_sum(TRANSACTION_EXPENSE).label('expense_total'),
            paid_count(TRANSACTION_INCOME).label('income_count'),
            paid_count(TRANSACTION_EXPENSE).label('expense_count'),
        ).select_from(Transaction)
        .join(Clinician, Clinician.id == Transaction.clinician_id)
        .join(Profile, Profile.user_id == Clinician.user_id)
        .filter(Transaction.status == TRANSACTION_PAID),
        start_date, end_date, clinician_id,
    ).group_by(Clinician.id, Profile.name).order_by(Profile.name.asc()).all()

    by_clinician = [{
        "clinician_id": row.id,
        "clinician_name": row.name,
        "income_total": round(float(row.income_total), 2),
        "expense_total": round(float(row.expense_total), 2),
        "income_count": row.income_count,
        "expense_count": row.expense_count,
    } for row in breakdown_rows]

    income = summary[TRANSACTION_INCOME]
    expense = summary[TRANSACTION_EXPENSE]
    return jsonify({
        "income": income,
        "expense": expense,
        "balance": round(income["total"] - expense["total"], 2),
        "by_clinician": by_clinician,
    }), 200


@financial_bp.route('/transactions', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_ATTENDANT)
def list_transactions():
    start_date, end_date = parse_date_range(request.args)
    query = filter_transactions(
        Transaction.query.options(
            joinedload(Transaction.clinician).joinedload(Clinician.user).joinedload(User.profile),
            joinedload(Transaction.appointment),
        ),
        start_date, end_date, request.args.get('clinician_id'),
    )

    type_filter = request.args.get('type')
    status_filter = request.args.get('status')
    if type_filter:
        query = query.filter(Transaction.type == _choice(type_filter, TRANSACTION_TYPES, 'type'))
    if status_filter:
        query = query.filter(Transaction.status == _choice(status_filter, TRANSACTION_STATUSES, 'status'))

    transactions = query.order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc()).all()
    return jsonify([t.to_dict() for t in transactions]), 200


@financial_bp.route('/transactions', methods=['POST'])
@role_required(ROLE_ADMIN)
def create_transaction():
    data = get_json_payload()
    require_fields(data, 'clinician_id', 'amount')

    clinician = get_reference(Clinician, optional(data, 'clinician_id'), 'clinician_id')
    if not clinician:
        raise ValidationError("clinician not found")

    appointment_id = optional(data, 'appointment_id')
    if appointment_id and not get_reference(Appointment, appointment_id, 'appointment_id'):
        raise ValidationError("appointment not found")

    transaction_date = optional(data, 'transaction_date')
    transaction = Transaction(
        appointment_id=appointment_id,
        clinician_id=clinician.id,
        type=_choice(optional(data, 'type') or TRANSACTION_INCOME, TRANSACTION_TYPES, 'type'),
        description=optional(data, 'description'),
        amount=parse_amount(data['amount'], 'amount', allow_zero=False),
        transaction_date=parse_date(transaction_date, 'transaction_date') if transaction_date else current_date(),
        status=_choice(optional(data, 'status') or TRANSACTION_PENDING, TRANSACTION_STATUSES, 'status'),
        notes=optional(data, 'notes'),
        source=SOURCE_MANUAL,
    )
    db.session.add(transaction)
    db.session.commit()

    current_app.logger.info(
        f"Manual {transaction.type} transaction {transaction.id} of {transaction.amount} "
        f"recorded by {g.identity.account_id}"
    )
    return jsonify({"message": "Transaction created successfully.", "id": transaction.id}), 201
