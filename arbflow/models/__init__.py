"""Data models and schemas."""

from arbflow.models.schemas import (
    american_to_decimal,
    decimal_to_probability,
    OutcomeQuote,
    MarketQuote,
    BookmakerOdds,
    GameOdds,
    OpportunityLeg,
    ArbitrageOpportunity,
    Saved,
    Duplicate,
    BelowThreshold,
    SaveResult,
    Subscription,
    SubscribeRequest,
)

__all__ = [
    "american_to_decimal",
    "decimal_to_probability",
    "OutcomeQuote",
    "MarketQuote",
    "BookmakerOdds",
    "GameOdds",
    "OpportunityLeg",
    "ArbitrageOpportunity",
    "Saved",
    "Duplicate",
    "BelowThreshold",
    "SaveResult",
    "Subscription",
    "SubscribeRequest",
]
