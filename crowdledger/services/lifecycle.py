"""Explicit transition tables for the ledger's status fields.

Status columns are only ever changed through :func:`transition`, which rejects
any move that is not listed in the table for that enum.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping

from crowdledger.core.errors import StateError
from crowdledger.models.campaign import CampaignStatus
from crowdledger.models.milestone import MilestoneStatus
from crowdledger.models.transaction import TransactionStatus

logger = logging.getLogger(__name__)

CAMPAIGN_TRANSITIONS: Mapping[CampaignStatus, frozenset[CampaignStatus]] = {
    CampaignStatus.PENDING: frozenset({CampaignStatus.APPROVED, CampaignStatus.REJECTED}),
    CampaignStatus.APPROVED: frozenset({CampaignStatus.COMPLETED}),
    CampaignStatus.REJECTED: frozenset(),
    CampaignStatus.COMPLETED: frozenset(),
}

MILESTONE_TRANSITIONS: Mapping[MilestoneStatus, frozenset[MilestoneStatus]] = {
    MilestoneStatus.PENDING: frozenset({MilestoneStatus.SUBMITTED}),
    MilestoneStatus.SUBMITTED: frozenset({MilestoneStatus.APPROVED, MilestoneStatus.REJECTED}),
    MilestoneStatus.APPROVED: frozenset({MilestoneStatus.PAID}),
    MilestoneStatus.REJECTED: frozenset(),
    MilestoneStatus.PAID: frozenset(),
}

TRANSACTION_TRANSITIONS: Mapping[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED}),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}

_TABLES: dict[type[Enum], Mapping[Any, frozenset[Any]]] = {
    CampaignStatus: CAMPAIGN_TRANSITIONS,
    MilestoneStatus: MILESTONE_TRANSITIONS,
    TransactionStatus: TRANSACTION_TRANSITIONS,
}

FINAL_MILESTONE_STATES = frozenset(
    {MilestoneStatus.APPROVED, MilestoneStatus.REJECTED, MilestoneStatus.PAID}
)

# Milestones that will never release funds again; the current milestone is the first one not in this set.
SETTLED_MILESTONE_STATES = frozenset({MilestoneStatus.REJECTED, MilestoneStatus.PAID})


def can_transition(current: Enum, target: Enum) -> bool:
    table = _TABLES.get(type(current))
    if table is None or type(target) is not type(current):
        return False
    return target in table.get(current, frozenset())


def is_terminal(status: Enum) -> bool:
    table = _TABLES[type(status)]
    return not table.get(status)


def transition(entity: Any, target: Enum, *, field: str = "status") -> Enum:
    """Move ``entity.<field>`` to ``target`` or raise :class:`StateError`.

    Returns the previous status.
    """

    current = getattr(entity, field)
    if not can_transition(current, target):
        entity_name = type(entity).__name__
        raise StateError(
            f"{entity_name} cannot move from {current.value} to {target.value}.",
            code="INVALID_TRANSITION",
            details={
                "entity": entity_name,
                "entity_id": getattr(entity, "id", None),
                "from": current.value,
                "to": target.value,
            },
        )
    setattr(entity, field, target)
    logger.debug(
        "Status transition",
        extra={"entity": type(entity).__name__, "entity_id": getattr(entity, "id", None), "from": current.value, "to": target.value},
    )
    return current


__all__ = [
    "CAMPAIGN_TRANSITIONS",
    "MILESTONE_TRANSITIONS",
    "TRANSACTION_TRANSITIONS",
    "FINAL_MILESTONE_STATES",
    "SETTLED_MILESTONE_STATES",
    "can_transition",
    "is_terminal",
    "transition",
]
