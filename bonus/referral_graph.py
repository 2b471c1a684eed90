from typing import Dict, List, Optional
import logging

from sqlalchemy import func

from errors import NotFound, ValidationError
from extensions import db
from models import User, SubscriptionStatus, iso


logger = logging.getLogger(__name__)


class ReferralGraphHelper:
    """
    Two-level referral graph over users.referred_by.

    A user's referral code is their own mobile number; referred_by holds the
    code used at signup and never changes. Walking up stops at the first
    missing link.
    """

    @staticmethod
    def get_user(user_id: int) -> User:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    @staticmethod
    def direct_referrer_of(user: User) -> Optional[User]:
        if not user.referred_by:
            return None
        return User.query.filter_by(mobile=user.referred_by).first()

    @staticmethod
    def resolve_upline(user_id: int) -> Dict[str, Optional[User]]:
        """
        Return {"direct_referrer": User|None, "grand_referrer": User|None}.
        """
        user = ReferralGraphHelper.get_user(user_id)

        direct = ReferralGraphHelper.direct_referrer_of(user)
        grand = ReferralGraphHelper.direct_referrer_of(direct) if direct else None

        # signup validation keeps chains acyclic; guard the two-level walk anyway
        if grand is not None and grand.id == user.id:
            logger.error(f"Referral cycle detected around user {user.id}")
            grand = None

        return {"direct_referrer": direct, "grand_referrer": grand}

    @staticmethod
    def list_direct_team(user_id: int) -> List[Dict]:
        """Direct referrals in signup order, for display only."""
        user = ReferralGraphHelper.get_user(user_id)
        team = (
            User.query.filter_by(referred_by=user.mobile)
            .order_by(User.created_at.asc(), User.id.asc())
            .all()
        )
        return [
            {
                "id": member.id,
                "name": member.full_name,
                "mobile": member.mobile,
                "premiumStatus": member.subscription_status,
                "activationCycle": member.activation_cycle,
                "createdAt": iso(member.created_at),
            }
            for member in team
        ]

    @staticmethod
    def count_cycle_qualified(referrer: User, cycle_id: str) -> int:
        """Direct referrals that are premium AND were activated in cycle_id."""
        return (
            db.session.query(func.count(User.id))
            .filter(
                User.referred_by == referrer.mobile,
                User.subscription_status == SubscriptionStatus.PREMIUM.value,
                User.activation_cycle == cycle_id,
            )
            .scalar()
        ) or 0

    @staticmethod
    def valve_status(user_id: int, cycle_id: str) -> Dict:
        """
        Tier-2 valve for a user, recomputed on every read.
        Unlocked when at least one direct referral went premium in cycle_id.
        """
        user = ReferralGraphHelper.get_user(user_id)
        qualified = ReferralGraphHelper.count_cycle_qualified(user, cycle_id)
        return {
            "cycleId": cycle_id,
            "qualifiedCount": qualified,
            "unlocked": qualified >= 1,
        }

    @staticmethod
    def validate_referral_code(mobile: str, referral_code: Optional[str]) -> Optional[User]:
        """
        Signup check for the referral code. Both arguments are normalized mobiles.
        Rejects self-referral and codes that match no account.
        """
        if not referral_code:
            return None

        if referral_code == mobile:
            logger.warning(f"Self-referral attempt by {mobile}")
            raise ValidationError("Cannot use your own referral code")

        referrer = User.query.filter_by(mobile=referral_code).first()
        if referrer is None:
            raise ValidationError("Referral code not found")
        return referrer
