from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError
import logging

from blueprints.auth import require_self_or_admin
from errors import Forbidden, NotFound, StoreFailure, ValidationError
from extensions import db
from models import Expense, ExpenseCategory
from utils import get_json_body, parse_amount, period_start


logger = logging.getLogger(__name__)

bp = Blueprint("expenses", __name__, url_prefix="")

EXPENSE_FIELDS = {"amount", "category", "description"}
CATEGORIES = {c.value for c in ExpenseCategory}
MAX_DESCRIPTION = 255


def _clean_expense(data, partial=False):
    unknown = set(data) - EXPENSE_FIELDS - {"user_id"}
    if unknown:
        raise ValidationError(f"Unknown expense fields: {', '.join(sorted(unknown))}")

    cleaned = {}
    if "amount" in data or not partial:
        cleaned["amount"] = parse_amount(data.get("amount"))

    if "category" in data or not partial:
        category = data.get("category") or ExpenseCategory.OTHER.value
        if category not in CATEGORIES:
            raise ValidationError(f"category must be one of {', '.join(sorted(CATEGORIES))}")
        cleaned["category"] = category

    if "description" in data or not partial:
        description = data.get("description")
        if description is not None and not isinstance(description, str):
            raise ValidationError("description must be text")
        description = (description or "").strip() or "Cash Entry"
        if len(description) > MAX_DESCRIPTION:
            raise ValidationError("description is too long")
        cleaned["description"] = description

    return cleaned


def _owned_expense(expense_id):
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        raise NotFound("Expense not found")
    if expense.user_id != current_user.id:
        raise Forbidden("You can only change your own expenses")
    return expense


#===========================================================================
#      LIST
#===========================================================================
@bp.route("/api/expenses/<int:user_id>", methods=["GET"])
@login_required
def list_expenses(user_id):
    """Newest first; ?filter=daily|weekly|monthly narrows the window."""
    require_self_or_admin(user_id)
    since = period_start(request.args.get("filter"))

    query = Expense.query.filter(Expense.user_id == user_id)
    if since is not None:
        query = query.filter(Expense.created_at >= since)
    expenses = query.order_by(Expense.created_at.desc(), Expense.id.desc()).all()

    return jsonify([e.to_dict() for e in expenses]), 200


#===========================================================================
#      CREATE / UPDATE / DELETE (owner only)
#===========================================================================
@bp.route("/api/expenses", methods=["POST"])
@login_required
def create_expense():
    data = get_json_body(request)
    if data.get("user_id") not in (None, current_user.id):
        raise Forbidden("You can only add your own expenses")

    cleaned = _clean_expense(data)
    try:
        expense = Expense(user_id=current_user.id, **cleaned)
        db.session.add(expense)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to create expense for user {current_user.id}: {e}")
        raise StoreFailure(str(e)) from e

    return jsonify(expense.to_dict()), 201


@bp.route("/api/expenses/<int:expense_id>", methods=["PUT"])
@login_required
def update_expense(expense_id):
    expense = _owned_expense(expense_id)

    data = get_json_body(request)
    data.pop("user_id", None)
    cleaned = _clean_expense(data, partial=True)
    try:
        for field, value in cleaned.items():
            setattr(expense, field, value)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to update expense {expense_id}: {e}")
        raise StoreFailure(str(e)) from e

    return jsonify(expense.to_dict()), 200


@bp.route("/api/expenses/<int:expense_id>", methods=["DELETE"])
@login_required
def delete_expense(expense_id):
    expense = _owned_expense(expense_id)
    try:
        db.session.delete(expense)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to delete expense {expense_id}: {e}")
        raise StoreFailure(str(e)) from e

    return jsonify({"success": True}), 200
