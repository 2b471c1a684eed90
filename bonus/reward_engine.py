# bonus/reward_engine.py
"""
Premium upgrade rewards.

upgrade() flips a user from free to premium exactly once and, in the same
transaction, pays:

* T1 to the direct referrer (always, when there is one);
* T2 to the referrer's referrer, only while that grandparent's valve is open:
  at least one of their direct referrals went premium in the current cycle.

Amounts and the cycle id are copied from GlobalSettings at grant time.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from bonus.referral_graph import ReferralGraphHelper
from bonus.settings_store import SettingsStore
from errors import NotFound, StoreFailure, WalletError
from extensions import db
from logger import rewards_logger as logger
from models import Reward, RewardTier, SubscriptionStatus, User, money
from utils import parse_amount


class RewardEngine:

    @staticmethod
    def _grant(recipient: User, amount: Decimal, tier: RewardTier, cycle_id: str,
               from_user_id: Optional[int] = None) -> Optional[Reward]:
        """Append a reward row and credit the wallet. Zero amounts are skipped."""
        if amount <= 0:
            logger.info(f"{tier.value} reward for user {recipient.id} skipped: configured amount is {amount}")
            return None

        reward = Reward(
            user_id=recipient.id,
            from_user_id=from_user_id,
            tier=tier.value,
            amount=amount,
            cycle_id=cycle_id,
        )
        db.session.add(reward)

        db.session.execute(
            update(User)
            .where(User.id == recipient.id)
            .values(wallet_balance=User.wallet_balance + amount)
            .execution_options(synchronize_session=False)
        )
        db.session.flush()
        return reward

    @staticmethod
    def upgrade(user_id: int) -> Dict[str, Any]:
        """
        Promote user_id to premium and pay the upline.

        Returns {"applied": bool, "user_id", "cycle_id", "rewards": [...]}.
        applied is False when the user was already premium; nothing is written
        then. Any store error rolls back the whole upgrade and raises.
        """
        try:
            settings = SettingsStore.load(lock=True)
            cycle_id = settings.current_cycle_id
            t1_amount = money(settings.t1_reward)
            t2_amount = money(settings.t2_reward)

            user = db.session.get(User, user_id)
            if user is None:
                raise NotFound(f"User {user_id} not found")

            flipped = db.session.execute(
                update(User)
                .where(
                    User.id == user_id,
                    User.subscription_status == SubscriptionStatus.FREE.value,
                )
                .values(
                    subscription_status=SubscriptionStatus.PREMIUM.value,
                    premium_activated_at=datetime.now(timezone.utc),
                    activation_cycle=cycle_id,
                )
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount != 1:
                db.session.rollback()
                logger.info(f"Upgrade ignored: user {user_id} is already premium")
                return {"applied": False, "user_id": user_id, "cycle_id": None, "rewards": []}

            db.session.refresh(user)
            granted: List[Reward] = []

            upline = ReferralGraphHelper.resolve_upline(user_id)
            direct = upline["direct_referrer"]
            grand = upline["grand_referrer"]

            if direct is not None:
                reward = RewardEngine._grant(direct, t1_amount, RewardTier.T1, cycle_id, from_user_id=user_id)
                if reward:
                    granted.append(reward)

            if direct is not None and grand is not None:
                # evaluated after the status flip above, inside the same transaction
                qualified = ReferralGraphHelper.count_cycle_qualified(grand, cycle_id)
                if qualified >= 1:
                    reward = RewardEngine._grant(grand, t2_amount, RewardTier.T2, cycle_id, from_user_id=user_id)
                    if reward:
                        granted.append(reward)
                else:
                    logger.info(
                        f"T2 locked for user {grand.id} in {cycle_id}: no premium direct referral this cycle"
                    )

            db.session.commit()

        except WalletError:
            db.session.rollback()
            raise
        except IntegrityError as e:
            db.session.rollback()
            logger.error(f"Upgrade of user {user_id} hit a duplicate reward, rolled back: {e}")
            raise StoreFailure(f"Upgrade of user {user_id} conflicted with an existing reward") from e
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Upgrade of user {user_id} failed, rolled back: {e}")
            raise StoreFailure(str(e)) from e

        for reward in granted:
            logger.info(
                f"{reward.tier} reward {reward.amount} to user {reward.user_id} "
                f"from user {user_id} in {cycle_id}"
            )

        return {
            "applied": True,
            "user_id": user_id,
            "cycle_id": cycle_id,
            "rewards": [reward.to_dict() for reward in granted],
        }

    @staticmethod
    def grant_bonus(user_id: int, amount) -> Dict[str, Any]:
        """Admin bonus: BONUS tier, no originating user, current cycle snapshot."""
        amount = parse_amount(amount)

        try:
            settings = SettingsStore.load(lock=True)
            user = db.session.get(User, user_id)
            if user is None:
                raise NotFound(f"User {user_id} not found")

            reward = RewardEngine._grant(user, amount, RewardTier.BONUS, settings.current_cycle_id)
            db.session.commit()
        except WalletError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Bonus for user {user_id} failed, rolled back: {e}")
            raise StoreFailure(str(e)) from e

        logger.info(f"BONUS reward {amount} to user {user_id} in {reward.cycle_id}")
        return reward.to_dict()

    @staticmethod
    def reward_totals(user_id: int) -> Dict[str, Decimal]:
        """Per-tier sums of everything a user has earned."""
        rows = (
            db.session.query(Reward.tier, func.coalesce(func.sum(Reward.amount), 0))
            .filter(Reward.user_id == user_id)
            .group_by(Reward.tier)
            .all()
        )
        by_tier = {tier: money(total) for tier, total in rows}

        totals = {
            "t1": by_tier.get(RewardTier.T1.value, money(0)),
            "t2": by_tier.get(RewardTier.T2.value, money(0)),
            "bonus": by_tier.get(RewardTier.BONUS.value, money(0)),
        }
        totals["total"] = totals["t1"] + totals["t2"] + totals["bonus"]
        return totals
