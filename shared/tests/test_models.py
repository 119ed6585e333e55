"""Tests for shared models and the API wire format."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from bperks_shared import (
    ClaimStatus,
    NewsAlert,
    RewardClaim,
    SyncState,
    Transaction,
    TransactionType,
    User,
)
from bperks_shared.wire import dict_to_wire, model_to_wire, to_camel, to_snake, wire_to_dict

CREATED = datetime(2025, 1, 15, 10, 0, tzinfo=UTC)


class TestCaseConversion:
    def test_to_camel(self) -> None:
        assert to_camel("points_cost") == "pointsCost"
        assert to_camel("location_lat") == "locationLat"
        assert to_camel("id") == "id"

    def test_to_snake(self) -> None:
        assert to_snake("pointsCost") == "points_cost"
        assert to_snake("isAdmin") == "is_admin"
        assert to_snake("id") == "id"

    def test_nested_dicts(self) -> None:
        assert dict_to_wire({"user_data": {"phone_number": "0917"}}) == {"userData": {"phoneNumber": "0917"}}
        assert wire_to_dict({"userData": {"phoneNumber": "0917"}}) == {"user_data": {"phone_number": "0917"}}

    def test_sync_state_never_leaves_the_client(self) -> None:
        assert dict_to_wire({"title": "x", "sync_state": "pending"}) == {"title": "x"}


class TestModels:
    def test_server_integer_ids_become_strings(self) -> None:
        news = NewsAlert.model_validate(
            wire_to_dict(
                {
                    "id": 12,
                    "title": "Clean-up drive",
                    "content": "Bring gloves",
                    "publishedAt": "2025-01-15T10:00:00Z",
                    "authorId": 1,
                }
            )
        )

        assert news.id == "12"
        assert news.author_id == "1"
        assert news.sync_state == SyncState.CONFIRMED

    def test_points_cannot_be_negative(self) -> None:
        with pytest.raises(ValidationError):
            User(
                id="1",
                username="juan",
                name="Juan",
                age=20,
                phone_number="0917",
                points=-1,
                created_at=CREATED,
            )

    def test_claim_defaults(self) -> None:
        claim = RewardClaim(id="c1", user_id=7, reward_id=5, claim_code="BP-1-ABC", claimed_at=CREATED)

        assert claim.status == ClaimStatus.UNCLAIMED
        assert claim.user_id == "7"
        assert claim.verified_at is None

    def test_model_to_wire(self) -> None:
        transaction = Transaction(
            id="t1",
            user_id="7",
            type=TransactionType.REDEEMED,
            amount=-100,
            description="Redeemed: Rice",
            reward_id="5",
            timestamp=CREATED,
            sync_state=SyncState.PENDING,
        )

        wire = model_to_wire(transaction)

        assert wire["userId"] == "7"
        assert wire["type"] == "redeemed"
        assert wire["rewardId"] == "5"
        assert wire["timestamp"] == "2025-01-15T10:00:00Z"
        assert "syncState" not in wire
        assert "sync_state" not in wire

    def test_claim_from_server_without_claimed_at(self) -> None:
        claim = RewardClaim.model_validate(
            wire_to_dict({"id": 3, "userId": 7, "rewardId": 5, "claimCode": "BP-1-ABC", "claimedAt": None})
        )

        assert claim.id == "3"
        assert claim.claimed_at is None
