"""Payout engine."""
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from crowdledger.config import get_settings
from crowdledger.core.errors import InsufficientFundsError, StateError
from crowdledger.models import (
    AuditLog,
    CampaignStatus,
    MilestoneStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from crowdledger.services import funding, milestones, payouts, voting
from crowdledger.services.ledger import campaign_ledger


@pytest.fixture
def approve_milestone(db_session, creator):
    def _approve(milestone_id, voter):
        milestones.submit_milestone(db_session, creator, milestone_id, f"https://proofs.example.com/{milestone_id}")
        voting.cast_vote(db_session, voter.id, milestone_id, True)
        voting.finalize_milestone(db_session, milestone_id)

    return _approve


def _payouts(db_session, campaign_id):
    stmt = select(Transaction).where(
        Transaction.campaign_id == campaign_id, Transaction.type == TransactionType.PAYOUT
    )
    return db_session.scalars(stmt).all()


def test_payout_moves_funds_and_activates_next(db_session, creator, make_user, make_campaign, approve_milestone):
    donor = make_user()
    campaign = make_campaign(creator, goal=700, milestones=(300, 400))
    funding.record_donation(db_session, donor.id, campaign.id, 500)
    first, second = milestones.list_milestones(db_session, campaign.id)
    approve_milestone(first.id, donor)

    result = payouts.payout_milestone(db_session, first.id, actor="user:admin")

    assert result.transaction.type == TransactionType.PAYOUT
    assert result.transaction.amount == 300
    assert result.transaction.user_id == creator.id
    assert result.transaction.milestone_id == first.id
    assert result.milestone.status == MilestoneStatus.PAID
    assert result.campaign_completed is False

    db_session.refresh(second)
    assert second.is_active is True
    summary = campaign_ledger(db_session, campaign.id)
    assert (summary.paid_out, summary.available_balance) == (300, 200)

    audit = db_session.scalars(
        select(AuditLog).where(AuditLog.action == "MILESTONE_PAID", AuditLog.entity_id == first.id)
    ).first()
    assert audit is not None and audit.actor == "user:admin"


def test_second_payout_is_rejected(db_session, creator, make_user, make_campaign, first_milestone, approve_milestone):
    donor = make_user()
    campaign = make_campaign(creator, milestones=(100, 100))
    funding.record_donation(db_session, donor.id, campaign.id, 300)
    milestone = first_milestone(campaign)
    approve_milestone(milestone.id, donor)
    payouts.payout_milestone(db_session, milestone.id)

    with pytest.raises(StateError) as excinfo:
        payouts.payout_milestone(db_session, milestone.id)

    assert excinfo.value.code == "ALREADY_PAID"
    assert len(_payouts(db_session, campaign.id)) == 1


def test_concurrent_payouts_pay_once(
    session_factory, db_session, creator, make_user, make_campaign, first_milestone, approve_milestone
):
    donor = make_user()
    campaign = make_campaign(creator, milestones=(100, 100))
    funding.record_donation(db_session, donor.id, campaign.id, 500)
    milestone = first_milestone(campaign)
    approve_milestone(milestone.id, donor)

    def _attempt(_):
        session = session_factory()
        try:
            payouts.payout_milestone(session, milestone.id)
            return "paid"
        except StateError:
            return "rejected"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(_attempt, range(4)))

    assert outcomes.count("paid") == 1
    assert outcomes.count("rejected") == 3
    assert len(_payouts(db_session, campaign.id)) == 1


def test_insufficient_funds_leaves_milestone_approved(
    db_session, creator, make_user, make_campaign, first_milestone, approve_milestone
):
    donor = make_user()
    campaign = make_campaign(creator, milestones=(300,))
    funding.record_donation(db_session, donor.id, campaign.id, 100)
    milestone = first_milestone(campaign)
    approve_milestone(milestone.id, donor)

    with pytest.raises(InsufficientFundsError) as excinfo:
        payouts.payout_milestone(db_session, milestone.id)

    assert excinfo.value.details == {"available_balance": 100, "amount": 300}
    db_session.refresh(milestone)
    assert milestone.status == MilestoneStatus.APPROVED
    assert _payouts(db_session, campaign.id) == []


def test_only_approved_milestones_are_paid(db_session, creator, make_user, make_campaign, first_milestone):
    donor = make_user()
    campaign = make_campaign(creator, milestones=(100,))
    funding.record_donation(db_session, donor.id, campaign.id, 100)
    milestone = first_milestone(campaign)
    milestones.submit_milestone(db_session, creator, milestone.id, "https://proofs.example.com/x")

    with pytest.raises(StateError) as excinfo:
        payouts.payout_milestone(db_session, milestone.id)
    assert excinfo.value.code == "MILESTONE_NOT_APPROVED"


def test_rejected_milestone_cannot_be_paid(db_session, creator, make_user, make_campaign, first_milestone):
    donor = make_user()
    campaign = make_campaign(creator, milestones=(100,))
    funding.record_donation(db_session, donor.id, campaign.id, 100)
    milestone = first_milestone(campaign)
    milestones.submit_milestone(db_session, creator, milestone.id, "https://proofs.example.com/x")
    voting.cast_vote(db_session, donor.id, milestone.id, False)
    voting.finalize_milestone(db_session, milestone.id)

    with pytest.raises(StateError):
        payouts.payout_milestone(db_session, milestone.id)


def test_campaign_completes_when_all_milestones_paid(db_session, creator, make_user, make_campaign, approve_milestone):
    donor = make_user()
    campaign = make_campaign(creator, goal=200, milestones=(100, 100))
    funding.record_donation(db_session, donor.id, campaign.id, 200)
    first, second = milestones.list_milestones(db_session, campaign.id)

    approve_milestone(first.id, donor)
    assert payouts.payout_milestone(db_session, first.id).campaign_completed is False
    approve_milestone(second.id, donor)
    assert payouts.payout_milestone(db_session, second.id).campaign_completed is True

    db_session.refresh(campaign)
    assert campaign.status == CampaignStatus.COMPLETED
    assert campaign.is_active is False
    assert campaign_ledger(db_session, campaign.id).available_balance == 0


def test_manual_policy_keeps_campaign_open(
    monkeypatch, db_session, creator, make_user, make_campaign, first_milestone, approve_milestone
):
    monkeypatch.setattr(get_settings(), "CAMPAIGN_COMPLETION_POLICY", "manual")
    donor = make_user()
    campaign = make_campaign(creator, milestones=(100,))
    funding.record_donation(db_session, donor.id, campaign.id, 100)
    milestone = first_milestone(campaign)
    approve_milestone(milestone.id, donor)

    assert payouts.payout_milestone(db_session, milestone.id).campaign_completed is False
    db_session.refresh(campaign)
    assert campaign.status == CampaignStatus.APPROVED


def test_donor_key_shaped_like_payout_key_does_not_block_payout(
    db_session, creator, make_user, make_campaign, first_milestone, approve_milestone
):
    donor = make_user()
    campaign = make_campaign(creator, milestones=(100,))
    milestone = first_milestone(campaign)
    funding.record_donation(
        db_session, donor.id, campaign.id, 100, idempotency_key=payouts.payout_key(milestone.id)
    )
    approve_milestone(milestone.id, donor)

    result = payouts.payout_milestone(db_session, milestone.id)

    assert result.milestone.status == MilestoneStatus.PAID
    assert result.transaction.idempotency_key == payouts.payout_key(milestone.id)
    assert len(_payouts(db_session, campaign.id)) == 1


def test_rejected_milestone_is_settled_and_campaign_completes(
    db_session, creator, make_user, make_campaign, approve_milestone
):
    donor = make_user()
    campaign = make_campaign(creator, goal=200, milestones=(100, 100))
    funding.record_donation(db_session, donor.id, campaign.id, 200)
    first, second = milestones.list_milestones(db_session, campaign.id)
    milestones.submit_milestone(db_session, creator, first.id, "https://proofs.example.com/first.pdf")
    voting.cast_vote(db_session, donor.id, first.id, False)
    voting.finalize_milestone(db_session, first.id)

    db_session.refresh(first)
    db_session.refresh(second)
    assert first.status == MilestoneStatus.REJECTED
    assert (first.is_active, second.is_active) == (False, True)

    approve_milestone(second.id, donor)
    assert payouts.payout_milestone(db_session, second.id).campaign_completed is True
    db_session.refresh(campaign)
    assert campaign.status == CampaignStatus.COMPLETED


def test_campaign_with_only_rejected_milestones_stays_open(
    db_session, creator, make_user, make_campaign, first_milestone
):
    donor = make_user()
    campaign = make_campaign(creator, milestones=(100,))
    funding.record_donation(db_session, donor.id, campaign.id, 100)
    milestone = first_milestone(campaign)
    milestones.submit_milestone(db_session, creator, milestone.id, "https://proofs.example.com/only.pdf")
    voting.cast_vote(db_session, donor.id, milestone.id, False)
    voting.finalize_milestone(db_session, milestone.id)

    db_session.refresh(milestone)
    db_session.refresh(campaign)
    assert milestone.is_active is False
    assert campaign.status == CampaignStatus.APPROVED


def test_mark_paid_retries_failed_savepoint(
    monkeypatch, caplog, db_session, creator, make_user, make_campaign, first_milestone, approve_milestone
):
    donor = make_user()
    campaign = make_campaign(creator, milestones=(100,))
    funding.record_donation(db_session, donor.id, campaign.id, 100)
    milestone = first_milestone(campaign)
    approve_milestone(milestone.id, donor)

    real_transition = payouts.transition
    failures = []

    def _flaky_transition(entity, target):
        if target == MilestoneStatus.PAID and not failures:
            failures.append(entity.id)
            raise SQLAlchemyError("savepoint lost")
        return real_transition(entity, target)

    monkeypatch.setattr(payouts, "transition", _flaky_transition)
    caplog.set_level(logging.WARNING, logger="crowdledger.services.payouts")

    result = payouts.payout_milestone(db_session, milestone.id)

    assert failures == [milestone.id]
    assert result.milestone.status == MilestoneStatus.PAID
    db_session.refresh(milestone)
    assert milestone.status == MilestoneStatus.PAID
    rows = _payouts(db_session, campaign.id)
    assert [row.status for row in rows] == [TransactionStatus.COMPLETED]
    assert "Retrying milestone PAID update" in [record.getMessage() for record in caplog.records]
