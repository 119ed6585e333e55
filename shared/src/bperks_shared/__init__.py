from .models import (
    User,
    Event,
    EventParticipant,
    Reward,
    RewardClaim,
    Report,
    NewsAlert,
    Transaction,
    Record,
    RecordId,
    SyncState,
    ReportStatus,
    ClaimStatus,
    NewsType,
    TransactionType,
    ParticipantStatus,
)

__all__ = [
    "User",
    "Event",
    "EventParticipant",
    "Reward",
    "RewardClaim",
    "Report",
    "NewsAlert",
    "Transaction",
    "Record",
    "RecordId",
    "SyncState",
    "ReportStatus",
    "ClaimStatus",
    "NewsType",
    "TransactionType",
    "ParticipantStatus",
]
