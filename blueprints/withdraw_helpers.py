from decimal import Decimal
import logging
import re
from typing import Any, Dict

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFound, StoreFailure, ValidationError, WalletError
from extensions import db
from models import User, Withdrawal, WithdrawalMethod
from utils import parse_amount


logger = logging.getLogger(__name__)

# ==========================================================
#                  CONFIGURATION
# ==========================================================
class WithdrawalConfig:
    MIN_WITHDRAWAL = Decimal("100")
    MAX_WITHDRAWAL = Decimal("50000")

    @staticmethod
    def limits():
        config = current_app.config
        return (
            Decimal(config.get("MIN_WITHDRAWAL", WithdrawalConfig.MIN_WITHDRAWAL)),
            Decimal(config.get("MAX_WITHDRAWAL", WithdrawalConfig.MAX_WITHDRAWAL)),
        )

# ==========================================================
#                  WITHDRAWAL VALIDATOR
# ==========================================================
class WithdrawalValidator:

    @staticmethod
    def validate_request(data: Dict[str, Any]) -> Dict[str, Any]:
        """Explicit allow-list of withdrawal fields; raises ValidationError."""
        amount = parse_amount(data.get("amount"))
        min_amount, max_amount = WithdrawalConfig.limits()
        if amount < min_amount:
            raise ValidationError(f"Minimum withdrawal is ₹{min_amount}")
        if amount > max_amount:
            raise ValidationError(f"Maximum withdrawal is ₹{max_amount}")

        method = data.get("method", WithdrawalMethod.UPI.value)
        if method == WithdrawalMethod.UPI.value:
            upi_id = (data.get("upiId") or "").strip()
            if not re.fullmatch(r"[\w.\-]{2,}@[A-Za-z]{2,}", upi_id):
                raise ValidationError("Please enter UPI ID")
            return {"amount": amount, "method": method, "upi_id": upi_id}

        if method == WithdrawalMethod.BANK.value:
            account_number = (data.get("accountNumber") or "").strip()
            ifsc_code = (data.get("ifscCode") or "").strip().upper()
            account_name = (data.get("accountName") or "").strip()
            if not account_number or not ifsc_code or not account_name:
                raise ValidationError("Please fill all bank details")
            if not re.fullmatch(r"[A-Z]{4}0[A-Z0-9]{6}", ifsc_code):
                raise ValidationError("Invalid IFSC code")
            return {
                "amount": amount,
                "method": method,
                "account_number": account_number,
                "ifsc_code": ifsc_code,
                "account_name": account_name,
            }

        raise ValidationError("method must be upi or bank")

# ==========================================================
#                  WITHDRAWAL PROCESSOR
# ==========================================================
class WithdrawalProcessor:

    @staticmethod
    def request_withdrawal(user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Debit the wallet and record a pending withdrawal in one transaction.
        The debit only applies while the balance covers it, so two concurrent
        requests can never take the wallet below zero.
        """
        details = WithdrawalValidator.validate_request(data)
        amount = details["amount"]

        try:
            if db.session.get(User, user_id) is None:
                raise NotFound(f"User {user_id} not found")

            debited = db.session.execute(
                update(User)
                .where(User.id == user_id, User.wallet_balance >= amount)
                .values(wallet_balance=User.wallet_balance - amount)
                .execution_options(synchronize_session=False)
            )
            if debited.rowcount != 1:
                db.session.rollback()
                raise ValidationError("Insufficient wallet balance")

            withdrawal = Withdrawal(user_id=user_id, status="pending", **details)
            db.session.add(withdrawal)
            db.session.commit()
        except WalletError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Withdrawal for user {user_id} failed: {e}")
            raise StoreFailure(str(e)) from e

        logger.info(f"Withdrawal {withdrawal.id} of {amount} requested by user {user_id}")
        return withdrawal.to_dict()
