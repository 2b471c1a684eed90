import pytest

from bonus.referral_graph import ReferralGraphHelper
from errors import NotFound, ValidationError
from extensions import db
from models import User


@pytest.fixture
def chain(app_ctx, make_user):
    """A <- B <- C (C was referred by B, B by A)."""
    a = make_user(name="Asha")
    b = make_user(name="Bala", referrer=a)
    c = make_user(name="Chitra", referrer=b)
    return a, b, c


def test_upline_of_leaf_has_both_levels(chain):
    a, b, c = chain
    upline = ReferralGraphHelper.resolve_upline(c.id)

    assert upline["direct_referrer"].id == b.id
    assert upline["grand_referrer"].id == a.id


def test_upline_stops_at_root(chain):
    a, b, _ = chain

    assert ReferralGraphHelper.resolve_upline(b.id) == {
        "direct_referrer": db.session.get(User, a.id),
        "grand_referrer": None,
    }
    assert ReferralGraphHelper.resolve_upline(a.id) == {
        "direct_referrer": None,
        "grand_referrer": None,
    }


def test_dangling_referral_code_ends_chain(app_ctx, make_user):
    orphan = make_user()
    user = db.session.get(User, orphan.id)
    user.referred_by = "+919111111111"
    db.session.commit()

    assert ReferralGraphHelper.resolve_upline(orphan.id)["direct_referrer"] is None


def test_upline_of_unknown_user(app_ctx):
    with pytest.raises(NotFound):
        ReferralGraphHelper.resolve_upline(404)


def test_direct_team_in_signup_order(app_ctx, make_user):
    lead = make_user()
    first = make_user(name="First", referrer=lead)
    second = make_user(name="Second", referrer=lead, premium_cycle="WEEK_01")
    make_user(name="Grandchild", referrer=first)

    team = ReferralGraphHelper.list_direct_team(lead.id)

    assert [member["id"] for member in team] == [first.id, second.id]
    assert team[0]["premiumStatus"] == "free"
    assert team[1] == {
        "id": second.id,
        "name": "Second",
        "mobile": second.mobile,
        "premiumStatus": "premium",
        "activationCycle": "WEEK_01",
        "createdAt": team[1]["createdAt"],
    }


def test_cycle_qualified_counts_only_current_cycle_premiums(app_ctx, make_user):
    lead = make_user()
    make_user(referrer=lead)
    make_user(referrer=lead, premium_cycle="WEEK_01")
    make_user(referrer=lead, premium_cycle="WEEK_01")
    make_user(referrer=lead, premium_cycle="WEEK_02")

    referrer = db.session.get(User, lead.id)
    assert ReferralGraphHelper.count_cycle_qualified(referrer, "WEEK_01") == 2
    assert ReferralGraphHelper.count_cycle_qualified(referrer, "WEEK_02") == 1
    assert ReferralGraphHelper.count_cycle_qualified(referrer, "WEEK_03") == 0


def test_valve_status(app_ctx, make_user):
    lead = make_user()
    make_user(referrer=lead, premium_cycle="WEEK_01")

    assert ReferralGraphHelper.valve_status(lead.id, "WEEK_01") == {
        "cycleId": "WEEK_01",
        "qualifiedCount": 1,
        "unlocked": True,
    }
    assert ReferralGraphHelper.valve_status(lead.id, "WEEK_02")["unlocked"] is False


def test_referral_code_checks(app_ctx, make_user):
    referrer = make_user()

    assert ReferralGraphHelper.validate_referral_code("+919000009999", None) is None
    assert ReferralGraphHelper.validate_referral_code("+919000009999", referrer.mobile).id == referrer.id

    with pytest.raises(ValidationError, match="own referral code"):
        ReferralGraphHelper.validate_referral_code(referrer.mobile, referrer.mobile)

    with pytest.raises(ValidationError, match="not found"):
        ReferralGraphHelper.validate_referral_code("+919000009999", "+919111111111")
