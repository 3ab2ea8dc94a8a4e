import pytest

from assessment_engine.components.entitlements.service import PLAN_UNLIMITED, EntitlementGate
from assessment_engine.models.entitlement import EntitlementLedgerEntry, EntitlementRecord
from assessment_engine.shared.errors import EntitlementExhausted, PaymentNotVerified
from tests.conftest import make_settings, new_user_id


@pytest.fixture
def gate():
    return EntitlementGate(make_settings(FREE_MOCK_INTERVIEWS=1, FREE_SKILLS_TESTS=2))


def _consume(gate, db, user_id, kind):
    source = gate.consume_entitlement(db, user_id, kind, session_public_id="sess-1")
    db.commit()
    return source


def test_new_user_is_eligible_on_free_quota(db, gate):
    eligibility = gate.check_eligibility(db, new_user_id(), "mock_interview")
    assert eligibility.allowed is True
    assert eligibility.reason == "free_quota"
    assert eligibility.free_remaining == 1


def test_free_quota_is_tracked_per_kind(db, gate):
    user_id = new_user_id()
    gate.ensure_record(db, user_id)

    assert _consume(gate, db, user_id, "mock_interview") == "free"
    assert _consume(gate, db, user_id, "skills_test") == "free"

    summary = gate.get_entitlement(db, user_id)
    assert summary["free_remaining"] == {"mock_interview": 0, "skills_test": 1}
    assert gate.check_eligibility(db, user_id, "mock_interview").allowed is False
    assert gate.check_eligibility(db, user_id, "skills_test").allowed is True


def test_credit_used_after_free_quota_then_exhausted(db, gate):
    user_id = new_user_id()
    gate.ensure_record(db, user_id)
    _consume(gate, db, user_id, "mock_interview")
    gate.grant_credits(db, user_id, 1, payment_verified=True, request_ref="pay-1")

    assert gate.check_eligibility(db, user_id, "mock_interview").reason == "credit_balance"
    assert _consume(gate, db, user_id, "mock_interview") == "credit"

    with pytest.raises(EntitlementExhausted):
        gate.consume_entitlement(db, user_id, "mock_interview")
    db.rollback()

    record = db.get(EntitlementRecord, user_id, populate_existing=True)
    assert record.credits_balance == 0
    reasons = [
        e.reason
        for e in db.query(EntitlementLedgerEntry)
        .filter(EntitlementLedgerEntry.user_id == user_id)
        .order_by(EntitlementLedgerEntry.id)
    ]
    assert reasons == ["free_session", "credit_purchase", "credit_session"]


def test_consume_without_record_is_exhausted(db, gate):
    with pytest.raises(EntitlementExhausted):
        gate.consume_entitlement(db, new_user_id(), "skills_test")


def test_unlimited_plan_never_spends_counters(db, gate):
    user_id = new_user_id()
    record = gate.ensure_record(db, user_id)
    record.plan = PLAN_UNLIMITED
    db.commit()

    for _ in range(3):
        assert _consume(gate, db, user_id, "mock_interview") == "plan"
    record = db.get(EntitlementRecord, user_id, populate_existing=True)
    assert record.free_interviews_used == 0
    assert record.credits_balance == 0
    assert gate.check_eligibility(db, user_id, "mock_interview").reason == "unlimited_plan"


def test_grant_credits_is_idempotent_per_request(db, gate):
    user_id = new_user_id()
    entry, created = gate.grant_credits(db, user_id, 3, payment_verified=True, request_ref="order-77")
    again, created_again = gate.grant_credits(db, user_id, 3, payment_verified=True, request_ref="order-77")

    assert created is True
    assert created_again is False
    assert again.id == entry.id
    assert gate.get_entitlement(db, user_id)["credits_balance"] == 3


def test_grant_requires_verified_payment_and_positive_count(db, gate):
    user_id = new_user_id()
    with pytest.raises(PaymentNotVerified):
        gate.grant_credits(db, user_id, 1, payment_verified=False, request_ref="order-1")
    with pytest.raises(ValueError):
        gate.grant_credits(db, user_id, 0, payment_verified=True, request_ref="order-2")
    assert gate.get_entitlement(db, user_id)["credits_balance"] == 0


def test_record_session_result_updates_running_stats(db, gate):
    user_id = new_user_id()
    gate.ensure_record(db, user_id)
    for score in (60, 90, 75):
        gate.record_session_result(db, user_id, score)
    db.commit()

    summary = gate.get_entitlement(db, user_id)
    assert summary["sessions_scored"] == 3
    assert summary["average_score"] == 75.0
    assert summary["best_score"] == 90


def test_unknown_user_summary_defaults(db, gate):
    summary = gate.get_entitlement(db, new_user_id())
    assert summary["plan"] == "free"
    assert summary["credits_balance"] == 0
    assert summary["free_remaining"] == {"mock_interview": 1, "skills_test": 2}
    assert summary["last_session_at"] is None
