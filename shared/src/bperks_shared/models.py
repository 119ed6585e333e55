"""Data models for the B-Perks platform.

These models define the schema for every collection the API serves.
All clients (web, desktop, kiosk) must conform to this schema.
"""

from datetime import datetime
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field

# Server ids are serial integers; locally created records use uuid hex strings.
RecordId = Annotated[str, BeforeValidator(lambda v: str(v) if isinstance(v, int) else v)]


class SyncState(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ReportStatus(StrEnum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"


class ClaimStatus(StrEnum):
    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"
    EXPIRED = "expired"


class NewsType(StrEnum):
    NEWS = "news"
    ALERT = "alert"
    ANNOUNCEMENT = "announcement"


class TransactionType(StrEnum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    EVENT = "event"
    DECLINED = "declined"
    POINTS_EARNED = "points_earned"
    POINTS_DEDUCTED = "points_deducted"


class ParticipantStatus(StrEnum):
    REGISTERED = "registered"
    PARTICIPATED = "participated"
    APPROVED = "approved"
    DECLINED = "declined"


class Record(BaseModel):
    """Base for every stored record.

    ``sync_state`` is client-side bookkeeping and is never sent to the server.
    """

    id: RecordId
    sync_state: SyncState = SyncState.CONFIRMED


class User(Record):
    """API: users/{id}"""

    username: str
    name: str
    age: Annotated[int, Field(ge=0)]
    phone_number: str
    points: Annotated[int, Field(ge=0)] = 0
    is_admin: bool = False
    created_at: datetime


class Event(Record):
    """API: events/{id}"""

    title: str
    description: str
    location: str
    location_lat: float | None = None
    location_lng: float | None = None
    points_reward: Annotated[int, Field(ge=0)]
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    image_url: str | None = None
    max_participants: int | None = None
    created_at: datetime


class EventParticipant(Record):
    """API: events/{eventId}/participants"""

    event_id: RecordId
    user_id: RecordId
    joined_at: datetime
    status: ParticipantStatus = ParticipantStatus.REGISTERED
    points_awarded: int | None = None


class Reward(Record):
    """API: rewards/{id}"""

    title: str
    description: str
    points_cost: Annotated[int, Field(ge=0)]
    image_url: str | None = None
    is_available: bool = True
    category: str
    total_quantity: Annotated[int, Field(ge=0)] = 1
    available_quantity: Annotated[int, Field(ge=0)] = 1
    created_at: datetime


class RewardClaim(Record):
    """API: reward-claims/{id}

    ``claim_code`` is what the resident shows at the barangay hall.
    """

    user_id: RecordId
    reward_id: RecordId
    claim_code: str
    status: ClaimStatus = ClaimStatus.UNCLAIMED
    points_used: int = 0
    claimed_at: datetime | None = None
    verified_at: datetime | None = None
    verified_by: RecordId | None = None


class Report(Record):
    """API: reports/{id}"""

    user_id: RecordId
    title: str
    description: str
    location_address: str
    location_lat: float | None = None
    location_lng: float | None = None
    image_url: str | None = None
    status: ReportStatus = ReportStatus.PENDING
    submitted_at: datetime
    reviewed_at: datetime | None = None
    reviewed_by: RecordId | None = None
    resolved_at: datetime | None = None


class NewsAlert(Record):
    """API: news/{id}"""

    title: str
    content: str
    type: NewsType = NewsType.NEWS
    image_url: str | None = None
    published_at: datetime
    author_id: RecordId


class Transaction(Record):
    """API: transactions/{id}

    The points ledger. ``amount`` is negative for redemptions.
    """

    user_id: RecordId
    type: TransactionType
    amount: int
    description: str
    event_id: RecordId | None = None
    reward_id: RecordId | None = None
    claim_id: RecordId | None = None
    granted_by: RecordId | None = None
    timestamp: datetime
