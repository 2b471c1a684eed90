# models.py - Flask-SQLAlchemy models for the wallet and referral engine
from decimal import Decimal
import enum
from sqlalchemy import UniqueConstraint, Index, text
from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash
from extensions import db

# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class SubscriptionStatus(str, enum.Enum):
    FREE = "free"
    PREMIUM = "premium"


class RewardTier(str, enum.Enum):
    T1 = "T1"
    T2 = "T2"
    BONUS = "BONUS"


class ExpenseCategory(str, enum.Enum):
    FOOD = "food"
    TRANSPORT = "transport"
    SHOPPING = "shopping"
    BILLS = "bills"
    HEALTH = "health"
    OTHER = "other"


class WithdrawalMethod(str, enum.Enum):
    UPI = "upi"
    BANK = "bank"


CURRENCY = db.Numeric(precision=12, scale=2, asdecimal=True)


def money(value):
    """Serialize a currency column; None becomes 0.00."""
    return Decimal(value if value is not None else 0).quantize(Decimal("0.01"))


def iso(value):
    return value.isoformat() if value else None


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime(timezone=True), default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=db.func.now(),
                           onupdate=db.func.now())

# ===========================================================
# USER MODELS
# ===========================================================

class User(UserMixin, db.Model, BaseMixin):
    """Account, wallet and growth projection in one row."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(150), nullable=False)
    mobile = db.Column(db.String(20), unique=True, nullable=False)
    pin_hash = db.Column(db.String(255), nullable=False)
    recovery_key_hash = db.Column(db.String(255), nullable=False)
    device_fingerprint = db.Column(db.String(128), nullable=True)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)

    wallet_balance = db.Column(CURRENCY, nullable=False, default=Decimal("0.00"), server_default=text("0.00"))

    subscription_status = db.Column(db.String(20), nullable=False, default=SubscriptionStatus.FREE.value, index=True)
    premium_activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    activation_cycle = db.Column(db.String(32), nullable=True)

    # referral code (mobile) of the inviting user, fixed at signup
    referred_by = db.Column(db.String(20), nullable=True, index=True)

    # profile
    age = db.Column(db.Integer, nullable=True)
    gender = db.Column(db.String(20), nullable=True)
    bank_name = db.Column(db.String(120), nullable=True)
    account_holder_name = db.Column(db.String(150), nullable=True)
    ifsc_code = db.Column(db.String(20), nullable=True)

    expenses = db.relationship('Expense', back_populates='user', lazy='dynamic', cascade="all,delete-orphan")
    rewards = db.relationship('Reward', back_populates='user', lazy='dynamic', foreign_keys='Reward.user_id')

    __table_args__ = (
        Index('idx_user_referred_cycle', 'referred_by', 'subscription_status', 'activation_cycle'),
        db.CheckConstraint('wallet_balance >= 0', name='chk_wallet_non_negative'),
    )

    def set_pin(self, pin: str):
        self.pin_hash = generate_password_hash(pin)

    def check_pin(self, pin: str) -> bool:
        return check_password_hash(self.pin_hash, pin)

    def set_recovery_key(self, key: str):
        self.recovery_key_hash = generate_password_hash(key)

    def check_recovery_key(self, key: str) -> bool:
        return check_password_hash(self.recovery_key_hash, key)

    @property
    def referral_code(self):
        return self.mobile

    @property
    def is_premium(self):
        return self.subscription_status == SubscriptionStatus.PREMIUM.value

    def to_dict(self):
        """Serialize user for JSON responses. Secrets never leave the model."""
        return {
            "id": self.id,
            "fullName": self.full_name,
            "mobile": self.mobile,
            "referralCode": self.referral_code,
            "referredBy": self.referred_by,
            "isAdmin": bool(self.is_admin),
            "walletBalance": money(self.wallet_balance),
            "subscriptionStatus": self.subscription_status,
            "premiumActivatedAt": iso(self.premium_activated_at),
            "activationCycle": self.activation_cycle,
            "deviceBound": self.device_fingerprint is not None,
            "age": self.age,
            "gender": self.gender,
            "bankName": self.bank_name,
            "accountHolderName": self.account_holder_name,
            "ifscCode": self.ifsc_code,
            "memberSince": iso(self.created_at),
        }

    def __repr__(self):
        return f'<User {self.id} {self.mobile}>'

# ===========================================================
# EXPENSE LEDGER
# ===========================================================

class Expense(db.Model, BaseMixin):
    __tablename__ = 'expenses'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    amount = db.Column(CURRENCY, nullable=False)
    category = db.Column(db.String(20), nullable=False, default=ExpenseCategory.OTHER.value)
    description = db.Column(db.String(255), nullable=False, default="Cash Entry")

    user = db.relationship('User', back_populates='expenses')

    __table_args__ = (
        Index('idx_expense_user_created', 'user_id', 'created_at'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": money(self.amount),
            "category": self.category,
            "description": self.description,
            "created_at": iso(self.created_at),
        }

# ===========================================================
# REWARD LEDGER (append-only)
# ===========================================================

class Reward(db.Model, BaseMixin):
    """Amount and cycle are snapshots taken at grant time and never change."""
    __tablename__ = 'rewards'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    from_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    tier = db.Column(db.String(10), nullable=False)
    amount = db.Column(CURRENCY, nullable=False)
    cycle_id = db.Column(db.String(32), nullable=False)

    user = db.relationship('User', foreign_keys=[user_id], back_populates='rewards')
    from_user = db.relationship('User', foreign_keys=[from_user_id])

    __table_args__ = (
        # one T1 / T2 per (recipient, originating user); NULL origins (BONUS) never collide
        UniqueConstraint('user_id', 'from_user_id', 'tier', name='uq_reward_recipient_origin_tier'),
        db.CheckConstraint('amount > 0', name='chk_reward_positive'),
        Index('idx_reward_tier_cycle', 'tier', 'cycle_id'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "from_user_id": self.from_user_id,
            "tier": self.tier,
            "amount": money(self.amount),
            "cycle_id": self.cycle_id,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f'<Reward {self.id} {self.tier} {self.amount} -> {self.user_id}>'

# ===========================================================
# GLOBAL SETTINGS (singleton row)
# ===========================================================

class GlobalSettings(db.Model, BaseMixin):
    __tablename__ = 'global_settings'

    SINGLETON_ID = 1

    id = db.Column(db.Integer, primary_key=True)
    subscription_fee = db.Column(CURRENCY, nullable=False)
    t1_reward = db.Column(CURRENCY, nullable=False)
    t2_reward = db.Column(CURRENCY, nullable=False)
    current_cycle_id = db.Column(db.String(32), nullable=False)
    notice_text = db.Column(db.Text, nullable=False, default="")
    campaign_active = db.Column(db.Boolean, nullable=False, default=False)
    campaign_title = db.Column(db.String(150), nullable=False, default="")

    def to_dict(self):
        return {
            "subscription_fee": money(self.subscription_fee),
            "t1_reward": money(self.t1_reward),
            "t2_reward": money(self.t2_reward),
            "current_cycle_id": self.current_cycle_id,
            "notice_text": self.notice_text or "",
            "campaign_active": bool(self.campaign_active),
            "campaign_title": self.campaign_title or "",
        }

# ===========================================================
# WITHDRAWALS
# ===========================================================

class Withdrawal(db.Model, BaseMixin):
    __tablename__ = 'withdrawals'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount = db.Column(CURRENCY, nullable=False)
    method = db.Column(db.String(10), nullable=False)
    upi_id = db.Column(db.String(100), nullable=True)
    account_number = db.Column(db.String(34), nullable=True)
    ifsc_code = db.Column(db.String(20), nullable=True)
    account_name = db.Column(db.String(150), nullable=True)
    status = db.Column(db.String(20), default='pending', nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": money(self.amount),
            "method": self.method,
            "status": self.status,
            "created_at": iso(self.created_at),
        }
