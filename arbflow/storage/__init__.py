"""Opportunity persistence."""

from arbflow.storage.models import Base, OpportunityRecord
from arbflow.storage.opportunities import OpportunityStore

__all__ = [
    "Base",
    "OpportunityRecord",
    "OpportunityStore",
]
