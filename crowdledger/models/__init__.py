"""ORM models package."""
from .audit import AuditLog
from .base import Base
from .campaign import Campaign, CampaignStatus
from .donation import Donation
from .milestone import Milestone, MilestoneStatus
from .transaction import Transaction, TransactionStatus, TransactionType
from .user import User, UserRole
from .vote import MilestoneVote

__all__ = [
    "AuditLog",
    "Base",
    "Campaign",
    "CampaignStatus",
    "Donation",
    "Milestone",
    "MilestoneStatus",
    "MilestoneVote",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "User",
    "UserRole",
]
