from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from bonus.reward_engine import RewardEngine
from bonus.settings_store import SettingsStore
from errors import NotFound, StoreFailure, ValidationError
from extensions import db
from models import GlobalSettings, Reward, RewardTier, User


def wallet(user_id):
    return db.session.get(User, user_id).wallet_balance


def rewards_for(user_id, tier=None):
    query = Reward.query.filter_by(user_id=user_id)
    if tier:
        query = query.filter_by(tier=tier)
    return query.order_by(Reward.id).all()


def set_cycle(cycle_id, **overrides):
    settings = SettingsStore.read_settings()
    settings.update(current_cycle_id=cycle_id, **overrides)
    SettingsStore.write_settings(settings)


@pytest.fixture
def chain(app_ctx, make_user):
    """A <- B <- C."""
    a = make_user(name="Asha")
    b = make_user(name="Bala", referrer=a)
    c = make_user(name="Chitra", referrer=b)
    return a, b, c


def test_week_one_scenario(chain):
    a, b, c = chain

    first = RewardEngine.upgrade(b.id)
    assert first["applied"] is True
    assert first["cycle_id"] == "WEEK_01"
    assert [(r["tier"], r["user_id"], r["amount"]) for r in first["rewards"]] == [
        ("T1", a.id, Decimal("50.00")),
    ]

    second = RewardEngine.upgrade(c.id)
    assert [(r["tier"], r["user_id"], r["amount"]) for r in second["rewards"]] == [
        ("T1", b.id, Decimal("50.00")),
        ("T2", a.id, Decimal("25.00")),
    ]

    assert wallet(a.id) == Decimal("75.00")
    assert wallet(b.id) == Decimal("50.00")
    assert wallet(c.id) == Decimal("0.00")

    upgraded = db.session.get(User, c.id)
    assert upgraded.subscription_status == "premium"
    assert upgraded.activation_cycle == "WEEK_01"
    assert upgraded.premium_activated_at is not None


def test_cycle_rollover_closes_the_valve(chain):
    a, b, c = chain
    RewardEngine.upgrade(b.id)

    set_cycle("WEEK_02")
    result = RewardEngine.upgrade(c.id)

    assert [(r["tier"], r["user_id"]) for r in result["rewards"]] == [("T1", b.id)]
    assert result["rewards"][0]["cycle_id"] == "WEEK_02"
    assert rewards_for(a.id, "T2") == []
    assert wallet(a.id) == Decimal("50.00")


def test_no_t2_while_grandparent_has_no_premium_referral(chain):
    a, b, c = chain

    result = RewardEngine.upgrade(c.id)

    assert [r["tier"] for r in result["rewards"]] == ["T1"]
    assert rewards_for(a.id) == []


def test_repeat_upgrade_is_a_no_op(chain):
    a, b, _ = chain
    RewardEngine.upgrade(b.id)

    again = RewardEngine.upgrade(b.id)

    assert again == {"applied": False, "user_id": b.id, "cycle_id": None, "rewards": []}
    assert len(rewards_for(a.id, "T1")) == 1
    assert wallet(a.id) == Decimal("50.00")


def test_activation_cycle_is_not_restamped(chain):
    _, b, _ = chain
    RewardEngine.upgrade(b.id)

    set_cycle("WEEK_02")
    RewardEngine.upgrade(b.id)

    assert db.session.get(User, b.id).activation_cycle == "WEEK_01"


def test_upgrade_without_referrer_pays_nobody(chain):
    a, _, _ = chain

    result = RewardEngine.upgrade(a.id)

    assert result["applied"] is True
    assert result["rewards"] == []
    assert Reward.query.count() == 0


def test_settings_changes_are_not_retroactive(chain):
    a, b, c = chain
    RewardEngine.upgrade(b.id)

    set_cycle("WEEK_01", t1_reward="80.00", t2_reward="40.00")
    RewardEngine.upgrade(c.id)

    assert [r.amount for r in rewards_for(a.id)] == [Decimal("50.00"), Decimal("40.00")]
    assert [r.amount for r in rewards_for(b.id)] == [Decimal("80.00")]


def test_zero_reward_amounts_are_skipped(chain):
    a, b, c = chain
    RewardEngine.upgrade(b.id)
    set_cycle("WEEK_01", t2_reward="0")

    result = RewardEngine.upgrade(c.id)

    assert [r["tier"] for r in result["rewards"]] == ["T1"]
    assert rewards_for(a.id, "T2") == []


def test_each_descendant_can_earn_its_own_t2(app_ctx, make_user):
    a = make_user()
    b = make_user(referrer=a)
    c = make_user(referrer=b)
    d = make_user(referrer=b)

    RewardEngine.upgrade(b.id)
    RewardEngine.upgrade(c.id)
    RewardEngine.upgrade(d.id)

    t2 = rewards_for(a.id, "T2")
    assert [r.from_user_id for r in t2] == [c.id, d.id]
    assert wallet(a.id) == Decimal("100.00")


def test_unknown_user(app_ctx):
    with pytest.raises(NotFound):
        RewardEngine.upgrade(12345)


def test_upgrade_requires_settings(chain):
    _, b, _ = chain
    db.session.delete(db.session.get(GlobalSettings, GlobalSettings.SINGLETON_ID))
    db.session.commit()

    with pytest.raises(NotFound):
        RewardEngine.upgrade(b.id)

    assert db.session.get(User, b.id).subscription_status == "free"


def fail_on_tier(monkeypatch, tier):
    original = RewardEngine._grant

    def grant(recipient, amount, reward_tier, cycle_id, from_user_id=None):
        if reward_tier == tier:
            raise OperationalError("UPDATE", {}, Exception("disk I/O error"))
        return original(recipient, amount, reward_tier, cycle_id, from_user_id=from_user_id)

    monkeypatch.setattr(RewardEngine, "_grant", staticmethod(grant))


def test_store_failure_on_t2_rolls_back_the_whole_upgrade(chain, monkeypatch):
    a, b, c = chain
    RewardEngine.upgrade(b.id)
    rewards_before = Reward.query.count()
    fail_on_tier(monkeypatch, RewardTier.T2)

    with pytest.raises(StoreFailure):
        RewardEngine.upgrade(c.id)

    assert db.session.get(User, c.id).subscription_status == "free"
    assert db.session.get(User, c.id).activation_cycle is None
    assert Reward.query.count() == rewards_before
    assert rewards_for(b.id) == []
    assert wallet(b.id) == Decimal("0.00")
    assert wallet(a.id) == Decimal("50.00")


def test_duplicate_reward_row_aborts_the_upgrade(chain):
    _, b, c = chain
    db.session.add(Reward(user_id=b.id, from_user_id=c.id, tier="T1", amount=Decimal("50.00"), cycle_id="WEEK_01"))
    db.session.commit()

    with pytest.raises(StoreFailure):
        RewardEngine.upgrade(c.id)

    assert db.session.get(User, c.id).subscription_status == "free"
    assert wallet(b.id) == Decimal("0.00")
    assert len(rewards_for(b.id)) == 1


def test_grant_bonus(chain):
    a, _, _ = chain
    set_cycle("WEEK_07")

    reward = RewardEngine.grant_bonus(a.id, "120.50")

    assert reward["tier"] == "BONUS"
    assert reward["from_user_id"] is None
    assert reward["cycle_id"] == "WEEK_07"
    assert reward["amount"] == Decimal("120.50")
    assert wallet(a.id) == Decimal("120.50")


@pytest.mark.parametrize("amount", [0, -5, "abc", None, "1.234"])
def test_grant_bonus_rejects_bad_amounts(chain, amount):
    a, _, _ = chain
    with pytest.raises(ValidationError):
        RewardEngine.grant_bonus(a.id, amount)
    assert wallet(a.id) == Decimal("0.00")


def test_grant_bonus_unknown_user(app_ctx):
    with pytest.raises(NotFound):
        RewardEngine.grant_bonus(999, 10)


def test_reward_totals(chain):
    a, b, c = chain
    RewardEngine.upgrade(b.id)
    RewardEngine.upgrade(c.id)
    RewardEngine.grant_bonus(a.id, 10)

    assert RewardEngine.reward_totals(a.id) == {
        "t1": Decimal("50.00"),
        "t2": Decimal("25.00"),
        "bonus": Decimal("10.00"),
        "total": Decimal("85.00"),
    }
    assert RewardEngine.reward_totals(c.id)["total"] == Decimal("0.00")
