"""Milestone approval engine."""
import pytest
from sqlalchemy import func, select

from crowdledger.config import get_settings
from crowdledger.core.errors import PermissionDeniedError, StateError, ValidationError
from crowdledger.models import AuditLog, MilestoneStatus, MilestoneVote, UserRole
from crowdledger.services import funding, milestones, voting


@pytest.fixture
def submitted(db_session, creator, make_user, make_campaign, first_milestone):
    """An approved campaign with one SUBMITTED milestone and three donors."""

    campaign = make_campaign(creator, goal=1000, milestones=(300, 400))
    donors = [make_user(prefix=f"voter{i}") for i in range(3)]
    for donor in donors:
        funding.record_donation(db_session, donor.id, campaign.id, 100)
    milestone = milestones.submit_milestone(
        db_session, creator, first_milestone(campaign).id, "https://proofs.example.com/m1.pdf"
    )
    return campaign, milestone, donors


def _vote_rows(db_session, milestone_id):
    return db_session.scalar(select(func.count(MilestoneVote.id)).where(MilestoneVote.milestone_id == milestone_id))


def test_revote_overwrites_previous_choice(db_session, submitted):
    _, milestone, donors = submitted

    first = voting.cast_vote(db_session, donors[0].id, milestone.id, True)
    second = voting.cast_vote(db_session, donors[0].id, milestone.id, False)

    assert second.id == first.id
    assert second.approved is False
    assert _vote_rows(db_session, milestone.id) == 1
    tally = voting.tally_votes(db_session, milestone.id)
    assert (tally.approve_count, tally.reject_count) == (0, 1)
    assert tally.eligible_voters == 3


def test_majority_approves_and_finalize_is_idempotent(db_session, submitted):
    _, milestone, donors = submitted
    voting.cast_vote(db_session, donors[0].id, milestone.id, True)
    voting.cast_vote(db_session, donors[1].id, milestone.id, True)
    voting.cast_vote(db_session, donors[2].id, milestone.id, False)

    result = voting.finalize_milestone(db_session, milestone.id)
    assert result.status == MilestoneStatus.APPROVED
    audits_before = db_session.scalar(select(func.count(AuditLog.id)))

    again = voting.finalize_milestone(db_session, milestone.id)
    assert again.status == MilestoneStatus.APPROVED
    assert (again.approve_count, again.reject_count) == (2, 1)
    assert db_session.scalar(select(func.count(AuditLog.id))) == audits_before


def test_tie_rejects_under_majority(db_session, submitted):
    _, milestone, donors = submitted
    voting.cast_vote(db_session, donors[0].id, milestone.id, True)
    voting.cast_vote(db_session, donors[1].id, milestone.id, False)

    assert voting.finalize_milestone(db_session, milestone.id).status == MilestoneStatus.REJECTED


def test_finalize_without_votes_fails(db_session, submitted):
    _, milestone, _ = submitted
    with pytest.raises(StateError) as excinfo:
        voting.finalize_milestone(db_session, milestone.id)
    assert excinfo.value.code == "NO_VOTES"


def test_finalize_requires_submitted(db_session, creator, make_campaign, first_milestone):
    campaign = make_campaign(creator, milestones=(100,))
    with pytest.raises(StateError) as excinfo:
        voting.finalize_milestone(db_session, first_milestone(campaign).id)
    assert excinfo.value.code == "MILESTONE_NOT_SUBMITTED"


def test_vote_after_finalization_is_rejected(db_session, submitted):
    _, milestone, donors = submitted
    voting.cast_vote(db_session, donors[0].id, milestone.id, True)
    voting.finalize_milestone(db_session, milestone.id)

    with pytest.raises(StateError) as excinfo:
        voting.cast_vote(db_session, donors[1].id, milestone.id, False)
    assert excinfo.value.code == "VOTING_CLOSED"
    assert _vote_rows(db_session, milestone.id) == 1


def test_vote_on_pending_milestone_is_rejected(db_session, creator, make_user, make_campaign, first_milestone):
    campaign = make_campaign(creator, milestones=(100,))
    donor = make_user()
    funding.record_donation(db_session, donor.id, campaign.id, 50)
    with pytest.raises(StateError):
        voting.cast_vote(db_session, donor.id, first_milestone(campaign).id, True)


def test_only_campaign_donors_may_vote(db_session, submitted, make_user):
    _, milestone, _ = submitted
    outsider = make_user(prefix="outsider")

    with pytest.raises(PermissionDeniedError) as excinfo:
        voting.cast_vote(db_session, outsider.id, milestone.id, True)
    assert excinfo.value.code == "NOT_ELIGIBLE_TO_VOTE"


def test_any_user_eligibility(monkeypatch, db_session, submitted, make_user):
    monkeypatch.setattr(get_settings(), "VOTER_ELIGIBILITY", "any_user")
    _, milestone, _ = submitted
    outsider = make_user(prefix="outsider")

    vote = voting.cast_vote(db_session, outsider.id, milestone.id, True)
    assert vote.approved is True


def test_owner_who_donated_cannot_vote(db_session, creator, submitted):
    campaign, milestone, _ = submitted
    funding.record_donation(db_session, creator.id, campaign.id, 50)

    with pytest.raises(PermissionDeniedError) as excinfo:
        voting.cast_vote(db_session, creator.id, milestone.id, True)

    assert excinfo.value.code == "NOT_ELIGIBLE_TO_VOTE"
    assert _vote_rows(db_session, milestone.id) == 0
    assert voting.tally_votes(db_session, milestone.id).eligible_voters == 3


def test_owner_cannot_vote_under_any_user(monkeypatch, db_session, creator, submitted):
    monkeypatch.setattr(get_settings(), "VOTER_ELIGIBILITY", "any_user")
    _, milestone, _ = submitted

    with pytest.raises(PermissionDeniedError):
        voting.cast_vote(db_session, creator.id, milestone.id, False)


def test_donors_without_donor_role_cannot_vote(db_session, submitted, make_user):
    campaign, milestone, _ = submitted
    other_creator = make_user(UserRole.CampaignCreator, prefix="othercreator")
    funding.record_donation(db_session, other_creator.id, campaign.id, 25)

    with pytest.raises(PermissionDeniedError) as excinfo:
        voting.cast_vote(db_session, other_creator.id, milestone.id, True)

    assert excinfo.value.code == "NOT_ELIGIBLE_TO_VOTE"
    assert voting.tally_votes(db_session, milestone.id).eligible_voters == 3


def test_quorum_rule_finalises_when_threshold_reached(monkeypatch, db_session, submitted):
    monkeypatch.setattr(get_settings(), "MILESTONE_DECISION_RULE", "quorum")
    monkeypatch.setattr(get_settings(), "MILESTONE_QUORUM_THRESHOLD", 0.6)
    _, milestone, donors = submitted

    voting.cast_vote(db_session, donors[0].id, milestone.id, True)
    assert voting.tally_votes(db_session, milestone.id).status == MilestoneStatus.SUBMITTED
    with pytest.raises(StateError) as excinfo:
        voting.finalize_milestone(db_session, milestone.id)
    assert excinfo.value.code == "QUORUM_NOT_REACHED"

    voting.cast_vote(db_session, donors[1].id, milestone.id, True)
    tally = voting.tally_votes(db_session, milestone.id)
    assert tally.status == MilestoneStatus.APPROVED
    assert (tally.approve_count, tally.eligible_voters) == (2, 3)


def test_quorum_rejection(monkeypatch, db_session, submitted):
    monkeypatch.setattr(get_settings(), "MILESTONE_DECISION_RULE", "quorum")
    _, milestone, donors = submitted

    voting.cast_vote(db_session, donors[0].id, milestone.id, False)
    voting.cast_vote(db_session, donors[1].id, milestone.id, False)

    assert voting.tally_votes(db_session, milestone.id).status == MilestoneStatus.REJECTED


def test_submission_requires_owner_and_proof(db_session, creator, make_user, make_campaign, first_milestone):
    campaign = make_campaign(creator, milestones=(100,))
    milestone = first_milestone(campaign)
    stranger = make_user(prefix="stranger")

    with pytest.raises(PermissionDeniedError):
        milestones.submit_milestone(db_session, stranger, milestone.id, "https://example.com/p")
    with pytest.raises(ValidationError) as excinfo:
        milestones.submit_milestone(db_session, creator, milestone.id, "  ")
    assert excinfo.value.code == "PROOF_REQUIRED"

    submitted = milestones.submit_milestone(db_session, creator, milestone.id, "https://example.com/p")
    assert submitted.status == MilestoneStatus.SUBMITTED
    with pytest.raises(StateError):
        milestones.submit_milestone(db_session, creator, milestone.id, "https://example.com/p2")
