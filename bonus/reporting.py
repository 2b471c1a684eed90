# bonus/reporting.py
from decimal import Decimal
from typing import Any, Dict
import logging

from sqlalchemy import and_, func, select
from sqlalchemy.orm import aliased
from sqlalchemy.exc import SQLAlchemyError

from bonus.settings_store import SettingsStore
from errors import StoreFailure
from extensions import db
from models import GlobalSettings, Reward, RewardTier, SubscriptionStatus, User, money


logger = logging.getLogger(__name__)

TOP_PERFORMERS = 3


class PnLReportHelper:
    """Read-only P&L projection over users and the reward ledger."""

    @staticmethod
    def current_fee() -> Decimal:
        # Gross revenue applies today's fee to every premium user, not the fee
        # each user actually paid.
        row = db.session.get(GlobalSettings, GlobalSettings.SINGLETON_ID)
        if row is None:
            return SettingsStore.DEFAULTS["subscription_fee"]
        return money(row.subscription_fee)

    @staticmethod
    def compute_pnl() -> Dict[str, Any]:
        premium = SubscriptionStatus.PREMIUM.value
        referral = aliased(User)
        premium_referrals = func.count(referral.id)

        try:
            total_users = db.session.query(func.count(User.id)).scalar() or 0
            premium_users = (
                db.session.query(func.count(User.id))
                .filter(User.subscription_status == premium)
                .scalar()
            ) or 0

            referrer_codes = select(User.referred_by).where(User.referred_by.isnot(None))
            active_referrers = (
                db.session.query(func.count(User.id))
                .filter(User.mobile.in_(referrer_codes))
                .scalar()
            ) or 0

            # ties keep user-id order
            top_rows = (
                db.session.query(User.id, User.full_name, User.mobile, premium_referrals)
                .outerjoin(
                    referral,
                    and_(referral.referred_by == User.mobile, referral.subscription_status == premium),
                )
                .group_by(User.id, User.full_name, User.mobile)
                .order_by(premium_referrals.desc(), User.id.asc())
                .limit(TOP_PERFORMERS)
                .all()
            )

            payout_rows = (
                db.session.query(Reward.tier, func.coalesce(func.sum(Reward.amount), 0))
                .group_by(Reward.tier)
                .all()
            )
            fee = PnLReportHelper.current_fee()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"P&L query failed: {e}")
            raise StoreFailure(str(e)) from e

        payouts_by_tier = {tier.value: money(0) for tier in RewardTier}
        for tier, total in payout_rows:
            payouts_by_tier[tier] = money(total)
        total_payouts = sum(payouts_by_tier.values(), money(0))

        gross_revenue = money(fee * premium_users)

        top_performers = [
            {
                "id": user_id,
                "fullName": full_name,
                "mobile": mobile,
                "referralCount": count,
            }
            for user_id, full_name, mobile, count in top_rows
        ]

        return {
            "totalUsers": total_users,
            "premiumUsers": premium_users,
            "freeUsers": total_users - premium_users,
            "activeReferrers": active_referrers,
            "subscriptionFee": fee,
            "grossRevenue": gross_revenue,
            "totalPayouts": total_payouts,
            "payoutsByTier": payouts_by_tier,
            "netRevenue": gross_revenue - total_payouts,
            "topPerformers": top_performers,
        }
