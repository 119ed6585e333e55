"""Resident and admin operations, applied locally first and then synced."""

import logging
import random
import string
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import BaseModel

from bperks_shared import (
    ClaimStatus,
    Event,
    EventParticipant,
    NewsAlert,
    NewsType,
    ParticipantStatus,
    Record,
    Report,
    ReportStatus,
    Reward,
    RewardClaim,
    SyncState,
    Transaction,
    TransactionType,
    User,
)
from bperks_shared.wire import dict_to_wire, model_to_wire, wire_to_dict

from .cache import LocalCache
from .collection import Collection, new_record_id
from .errors import (
    ApplicationError,
    DuplicateRecordError,
    DuplicateUsernameError,
    InsufficientPointsError,
    NotAuthorizedError,
    OfflineError,
    OutOfStockError,
    RequestRejectedError,
)
from .gateway import Mutation, MutationGateway, MutationResult, error_message
from .queue import ActionKind, ActionQueue, HttpMethod, QueuedAction, RecordRef

logger = logging.getLogger(__name__)

MODELS: dict[str, type[Record]] = {
    "users": User,
    "events": Event,
    "participants": EventParticipant,
    "rewards": Reward,
    "reports": Report,
    "news": NewsAlert,
    "claims": RewardClaim,
    "transactions": Transaction,
}

# Fields in other collections that hold a record's id, by the record's collection
_REFERENCES: dict[str, tuple[tuple[str, str], ...]] = {
    "users": (
        ("participants", "user_id"),
        ("claims", "user_id"),
        ("claims", "verified_by"),
        ("reports", "user_id"),
        ("reports", "reviewed_by"),
        ("news", "author_id"),
        ("transactions", "user_id"),
        ("transactions", "granted_by"),
    ),
    "events": (("participants", "event_id"), ("transactions", "event_id")),
    "rewards": (("claims", "reward_id"), ("transactions", "reward_id")),
    "claims": (("transactions", "claim_id"),),
}

_CODE_ALPHABET = string.digits + string.ascii_uppercase


def generate_claim_code(now: datetime) -> str:
    """Claim code shown to the resident, e.g. ``BP-1721462400000-K3J9Q0ZP2``."""
    suffix = "".join(random.choices(_CODE_ALPHABET, k=9))
    return f"BP-{int(now.timestamp() * 1000)}-{suffix}"


def _ref(records: Collection[Any], record_id: str) -> RecordRef:
    return RecordRef(collection=records.name, record_id=record_id)


def _server_id(body: Any) -> str | None:
    """The id in a create response. Signup wraps the record as ``{"user": ...}``."""
    if isinstance(body, dict) and isinstance(body.get("user"), dict):
        body = body["user"]
    if isinstance(body, dict) and body.get("id") is not None:
        return str(body["id"])
    return None


class PerksService:
    """Points, rewards, events, reports and news for one device.

    Every operation validates against the local cache, applies its changes
    there with ``sync_state=pending``, and submits one mutation through the
    gateway. The mutation carries a ref to every record it touched. Sent
    mutations confirm those records at once; queued ones leave them pending
    until the reconciler reports back. If the server rejects a mutation
    outright, the local changes are rolled back and the error is raised.

    Records created here start with a local id. Once the server has stored
    one, it is re-keyed to the server's id everywhere: its collection, the
    records that reference it, and the queued actions that mention it.
    """

    def __init__(
        self,
        cache: LocalCache,
        gateway: MutationGateway,
        queue: ActionQueue | None = None,
        client: httpx.Client | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._cache = cache
        self._gateway = gateway
        self._queue = queue
        self._client = client
        self._clock = clock or (lambda: datetime.now(UTC))

    def collection(self, name: str) -> Collection[Any]:
        return Collection(self._cache, name, MODELS[name])

    # -- Sync bookkeeping ------------------------------------------------

    def mark_sync_state(self, ref: RecordRef, state: SyncState) -> None:
        """Record the outcome of a mutation on one of its local records."""
        if ref.collection not in MODELS:
            logger.warning("Unknown collection in record ref: %s", ref.collection)
            return
        records = self.collection(ref.collection)
        if ref.record_id not in records:
            logger.debug("Record %s/%s no longer cached", ref.collection, ref.record_id)
            return
        records.update(ref.record_id, sync_state=state)
        records.save()

    def pending_records(self) -> list[Record]:
        """Locally changed records the server hasn't confirmed yet."""
        pending: list[Record] = []
        for name in MODELS:
            pending.extend(
                self.collection(name).filter(lambda r: r.sync_state != SyncState.CONFIRMED)
            )
        return pending

    def adopt_server_id(self, ref: RecordRef, server_id: str) -> None:
        """Re-key a record created on this device to the id the server assigned."""
        old_id = ref.record_id
        if old_id == server_id:
            return
        if ref.collection not in MODELS:
            logger.warning("Unknown collection in record ref: %s", ref.collection)
            return

        records = self.collection(ref.collection)
        record = records.get(old_id)
        if record is not None:
            records.remove(old_id)
            records.remove(server_id)
            records.add(record.model_copy(update={"id": server_id}))
            records.save()

        for name, field_name in _REFERENCES.get(ref.collection, ()):
            referencing = self.collection(name)
            stale = referencing.filter(lambda r: getattr(r, field_name) == old_id)
            for item in stale:
                referencing.update(item.id, **{field_name: server_id})
            if stale:
                referencing.save()

        if ref.collection == "users":
            snapshot = self._cache.get_cached_user_data(old_id)
            if snapshot is not None:
                self._cache.cache_user_data(server_id, {**snapshot, "id": server_id})

        if self._queue is not None:
            self._queue.replace_record_id(old_id, server_id)
        logger.info("%s %s is now %s", ref.collection, old_id, server_id)

    def adopt_created(self, action: QueuedAction, body: Any) -> None:
        """Apply the server's answer to a replayed create."""
        server_id = _server_id(body)
        if server_id is None or not action.records:
            return
        self.adopt_server_id(action.records[0], server_id)

    # -- Users -----------------------------------------------------------

    def login(self, username: str, password: str) -> User:
        """Sign in and keep the user's snapshot for offline use.

        Needs the server: raises OfflineError when it can't be reached and
        RequestRejectedError for wrong credentials.
        """
        if self._client is None:
            raise OfflineError("No API client configured")
        try:
            response = self._client.post(
                "/api/auth/login", json={"username": username, "password": password}
            )
        except httpx.HTTPError as e:
            raise OfflineError("Cannot sign in while offline") from e
        if not response.is_success:
            raise RequestRejectedError(response.status_code, error_message(response))

        data = response.json()
        user = User.model_validate(wire_to_dict(data.get("user", data)))
        users = self.collection("users")
        users.remove(user.id)
        users.add(user)
        users.save()
        self._cache.cache_user_data(user.id, user.model_dump(mode="json"))
        logger.info("Signed in as %s (%s)", user.username, user.id)
        return user

    def register_user(self, username: str, password: str, name: str, age: int, phone_number: str) -> User:
        users = self.collection("users")
        if users.find(lambda u: u.username.lower() == username.lower()):
            raise DuplicateUsernameError(f"Username {username!r} is already taken")

        user = User(
            id=new_record_id(),
            username=username,
            name=name,
            age=age,
            phone_number=phone_number,
            points=0,
            is_admin=False,
            created_at=self._clock(),
            sync_state=SyncState.PENDING,
        )
        refs = [_ref(users, user.id)]
        # The password only travels with the signup request; it is never cached
        payload = {**model_to_wire(user), "password": password}
        try:
            with self._rollback_on_reject(users):
                users.add(user)
                users.save()
                result = self._submit(ActionKind.CREATE, "/api/auth/signup", HttpMethod.POST, payload, refs)
        except RequestRejectedError as e:
            if e.status_code == 400 and "already exists" in e.message:
                raise DuplicateUsernameError(f"Username {username!r} is already taken") from e
            raise
        return self._settle(result, refs, created=True)

    def adjust_points(self, actor_id: str, user_id: str, points: int, reason: str | None = None) -> User:
        """Grant (positive) or deduct (negative) points on behalf of an admin."""
        users = self.collection("users")
        transactions = self.collection("transactions")
        self._require_admin(users, actor_id)
        user = users.require(user_id)
        new_total = user.points + points
        if new_total < 0:
            raise InsufficientPointsError(user.points, -points)

        transaction = self._transaction(
            user_id=user.id,
            type=TransactionType.POINTS_EARNED if points > 0 else TransactionType.POINTS_DEDUCTED,
            amount=points,
            description=reason or "Admin adjustment",
            granted_by=actor_id,
        )
        refs = [_ref(users, user.id), _ref(transactions, transaction.id)]
        with self._rollback_on_reject(users, transactions):
            users.update(user.id, points=new_total, sync_state=SyncState.PENDING)
            transactions.add(transaction)
            users.save()
            transactions.save()
            # The server takes the new balance, so replaying this is idempotent
            result = self._submit(
                ActionKind.UPDATE,
                f"/api/users/{user.id}/points",
                HttpMethod.POST,
                {"points": new_total, "reason": transaction.description},
                refs,
            )
        updated = self._settle(result, refs)
        self._cache.cache_user_data(updated.id, updated.model_dump(mode="json"))
        return updated

    def transactions_for(self, user_id: str) -> list[Transaction]:
        items = self.collection("transactions").filter(lambda t: t.user_id == str(user_id))
        return sorted(items, key=lambda t: t.timestamp, reverse=True)

    # -- Events ----------------------------------------------------------

    def create_event(
        self,
        actor_id: str,
        title: str,
        description: str,
        location: str,
        points_reward: int,
        start_date: datetime,
        end_date: datetime,
        location_lat: float | None = None,
        location_lng: float | None = None,
        image_url: str | None = None,
        max_participants: int | None = None,
    ) -> Event:
        self._require_admin(self.collection("users"), actor_id)
        if end_date < start_date:
            raise ApplicationError("Event cannot end before it starts")

        events = self.collection("events")
        event = Event(
            id=new_record_id(),
            title=title,
            description=description,
            location=location,
            location_lat=location_lat,
            location_lng=location_lng,
            points_reward=points_reward,
            start_date=start_date,
            end_date=end_date,
            image_url=image_url,
            max_participants=max_participants,
            created_at=self._clock(),
            sync_state=SyncState.PENDING,
        )
        refs = [_ref(events, event.id)]
        with self._rollback_on_reject(events):
            events.add(event)
            events.save()
            result = self._submit(
                ActionKind.CREATE, "/api/events", HttpMethod.POST, model_to_wire(event), refs
            )
        return self._settle(result, refs, created=True)

    def update_event(self, actor_id: str, event_id: str, **changes: Any) -> Event:
        self._require_admin(self.collection("users"), actor_id)
        events = self.collection("events")
        return self._update_record(events, event_id, f"/api/events/{event_id}", changes)

    def delete_event(self, actor_id: str, event_id: str) -> None:
        self._require_admin(self.collection("users"), actor_id)
        self._delete_record(self.collection("events"), event_id, f"/api/events/{event_id}")

    def join_event(self, user_id: str, event_id: str) -> EventParticipant:
        users = self.collection("users")
        events = self.collection("events")
        participants = self.collection("participants")
        transactions = self.collection("transactions")

        user = users.require(user_id)
        event = events.require(event_id)
        if not event.is_active:
            raise ApplicationError(f"Event {event.title!r} is no longer active")
        registered = participants.filter(lambda p: p.event_id == event.id)
        if any(p.user_id == user.id for p in registered):
            raise DuplicateRecordError("User is already registered for this event")
        if event.max_participants is not None and len(registered) >= event.max_participants:
            raise ApplicationError(f"Event {event.title!r} is full")

        participant = EventParticipant(
            id=new_record_id(),
            event_id=event.id,
            user_id=user.id,
            joined_at=self._clock(),
            sync_state=SyncState.PENDING,
        )
        transaction = self._transaction(
            user_id=user.id,
            type=TransactionType.EVENT,
            amount=0,
            description=f'Registered for event: "{event.title}"',
            event_id=event.id,
        )
        refs = [_ref(participants, participant.id), _ref(transactions, transaction.id)]
        with self._rollback_on_reject(participants, transactions):
            participants.add(participant)
            transactions.add(transaction)
            participants.save()
            transactions.save()
            result = self._submit(
                ActionKind.CREATE,
                f"/api/events/{event.id}/join",
                HttpMethod.POST,
                {"userId": user.id},
                refs,
            )
        return self._settle(result, refs, created=True)

    def review_participation(self, actor_id: str, participant_id: str, approve: bool) -> EventParticipant:
        """Approve (awarding the event's points once) or decline a participant."""
        users = self.collection("users")
        self._require_admin(users, actor_id)
        events = self.collection("events")
        participants = self.collection("participants")
        transactions = self.collection("transactions")

        participant = participants.require(participant_id)
        if participant.status in (ParticipantStatus.APPROVED, ParticipantStatus.DECLINED):
            raise ApplicationError("Participant has already been processed")
        event = events.require(participant.event_id)

        if approve:
            changes: dict[str, Any] = {
                "status": ParticipantStatus.APPROVED,
                "points_awarded": event.points_reward,
            }
            transaction = self._transaction(
                user_id=participant.user_id,
                type=TransactionType.EARNED,
                amount=event.points_reward,
                description=f'Points granted for participating in "{event.title}"',
                event_id=event.id,
            )
        else:
            changes = {"status": ParticipantStatus.DECLINED}
            transaction = self._transaction(
                user_id=participant.user_id,
                type=TransactionType.DECLINED,
                amount=0,
                description=f'Participation declined for "{event.title}"',
                event_id=event.id,
            )

        refs = [_ref(participants, participant.id), _ref(transactions, transaction.id)]
        with self._rollback_on_reject(users, participants, transactions):
            if approve:
                user = users.require(participant.user_id)
                users.update(
                    user.id,
                    points=user.points + event.points_reward,
                    sync_state=SyncState.PENDING,
                )
                refs.append(_ref(users, user.id))
            updated = participants.update(participant.id, sync_state=SyncState.PENDING, **changes)
            transactions.add(transaction)
            users.save()
            participants.save()
            transactions.save()
            result = self._submit(
                ActionKind.UPDATE,
                f"/api/event-participants/{participant.id}",
                HttpMethod.PUT,
                _changes_to_wire(updated, changes),
                refs,
            )
        return self._settle(result, refs)

    # -- Rewards ---------------------------------------------------------

    def create_reward(
        self,
        actor_id: str,
        title: str,
        description: str,
        points_cost: int,
        category: str,
        total_quantity: int = 1,
        image_url: str | None = None,
    ) -> Reward:
        self._require_admin(self.collection("users"), actor_id)
        rewards = self.collection("rewards")
        reward = Reward(
            id=new_record_id(),
            title=title,
            description=description,
            points_cost=points_cost,
            category=category,
            total_quantity=total_quantity,
            available_quantity=total_quantity,
            is_available=total_quantity > 0,
            image_url=image_url,
            created_at=self._clock(),
            sync_state=SyncState.PENDING,
        )
        refs = [_ref(rewards, reward.id)]
        with self._rollback_on_reject(rewards):
            rewards.add(reward)
            rewards.save()
            result = self._submit(
                ActionKind.CREATE, "/api/rewards", HttpMethod.POST, model_to_wire(reward), refs
            )
        return self._settle(result, refs, created=True)

    def update_reward(self, actor_id: str, reward_id: str, **changes: Any) -> Reward:
        self._require_admin(self.collection("users"), actor_id)
        rewards = self.collection("rewards")
        return self._update_record(rewards, reward_id, f"/api/rewards/{reward_id}", changes)

    def delete_reward(self, actor_id: str, reward_id: str) -> None:
        """Take a reward off the catalogue. Existing claims are kept."""
        self._require_admin(self.collection("users"), actor_id)
        self._delete_record(self.collection("rewards"), reward_id, f"/api/rewards/{reward_id}")

    def claim_reward(self, user_id: str, reward_id: str) -> RewardClaim:
        """Redeem points for a reward.

        Raises InsufficientPointsError or OutOfStockError without touching the
        cache or the queue.
        """
        users = self.collection("users")
        rewards = self.collection("rewards")
        claims = self.collection("claims")
        transactions = self.collection("transactions")

        user = users.require(user_id)
        reward = rewards.require(reward_id)
        if user.points < reward.points_cost:
            raise InsufficientPointsError(user.points, reward.points_cost)
        if reward.available_quantity <= 0 or not reward.is_available:
            raise OutOfStockError(f"Reward {reward.title!r} is out of stock")

        now = self._clock()
        claim = RewardClaim(
            id=new_record_id(),
            user_id=user.id,
            reward_id=reward.id,
            claim_code=generate_claim_code(now),
            points_used=reward.points_cost,
            claimed_at=now,
            sync_state=SyncState.PENDING,
        )
        transaction = self._transaction(
            user_id=user.id,
            type=TransactionType.REDEEMED,
            amount=-reward.points_cost,
            description=f"Redeemed: {reward.title}",
            reward_id=reward.id,
            claim_id=claim.id,
        )
        refs = [
            _ref(claims, claim.id),
            _ref(users, user.id),
            _ref(rewards, reward.id),
            _ref(transactions, transaction.id),
        ]
        remaining = reward.available_quantity - 1
        with self._rollback_on_reject(users, rewards, claims, transactions):
            users.update(user.id, points=user.points - reward.points_cost, sync_state=SyncState.PENDING)
            rewards.update(
                reward.id,
                available_quantity=remaining,
                is_available=remaining > 0,
                sync_state=SyncState.PENDING,
            )
            claims.add(claim)
            transactions.add(transaction)
            for records in (users, rewards, claims, transactions):
                records.save()
            result = self._submit(
                ActionKind.CREATE,
                f"/api/rewards/{reward.id}/claim",
                HttpMethod.POST,
                {"userId": user.id, "claimCode": claim.claim_code},
                refs,
            )
        logger.info("User %s claimed %r (%s)", user.id, reward.title, claim.claim_code)
        return self._settle(result, refs, created=True)

    def verify_claim(self, actor_id: str, claim_id: str) -> RewardClaim:
        self._require_admin(self.collection("users"), actor_id)
        claims = self.collection("claims")
        claim = claims.require(claim_id)
        if claim.status != ClaimStatus.UNCLAIMED:
            raise ApplicationError(f"Claim {claim.claim_code} is already {claim.status}")
        changes = {
            "status": ClaimStatus.CLAIMED,
            "verified_at": self._clock(),
            "verified_by": actor_id,
        }
        refs = [_ref(claims, claim.id)]
        with self._rollback_on_reject(claims):
            updated = claims.update(claim.id, sync_state=SyncState.PENDING, **changes)
            claims.save()
            result = self._submit(
                ActionKind.UPDATE,
                f"/api/reward-claims/{claim.id}/verify",
                HttpMethod.POST,
                _changes_to_wire(updated, changes),
                refs,
            )
        return self._settle(result, refs)

    def claims_for(self, user_id: str) -> list[RewardClaim]:
        return self.collection("claims").filter(lambda c: c.user_id == str(user_id))

    def find_claim_by_code(self, claim_code: str) -> RewardClaim | None:
        return self.collection("claims").find(lambda c: c.claim_code == claim_code)

    # -- Reports ---------------------------------------------------------

    def file_report(
        self,
        user_id: str,
        title: str,
        description: str,
        location_address: str,
        location_lat: float | None = None,
        location_lng: float | None = None,
        image_url: str | None = None,
    ) -> Report:
        reports = self.collection("reports")
        report = Report(
            id=new_record_id(),
            user_id=user_id,
            title=title,
            description=description,
            location_address=location_address,
            location_lat=location_lat,
            location_lng=location_lng,
            image_url=image_url,
            submitted_at=self._clock(),
            sync_state=SyncState.PENDING,
        )
        refs = [_ref(reports, report.id)]
        with self._rollback_on_reject(reports):
            reports.add(report)
            reports.save()
            result = self._submit(
                ActionKind.CREATE, "/api/reports", HttpMethod.POST, model_to_wire(report), refs
            )
        return self._settle(result, refs, created=True)

    def review_report(self, actor_id: str, report_id: str, status: ReportStatus) -> Report:
        self._require_admin(self.collection("users"), actor_id)
        now = self._clock()
        changes: dict[str, Any] = {"status": status, "reviewed_at": now, "reviewed_by": actor_id}
        if status == ReportStatus.RESOLVED:
            changes["resolved_at"] = now
        reports = self.collection("reports")
        return self._update_record(reports, report_id, f"/api/reports/{report_id}", changes)

    # -- News ------------------------------------------------------------

    def publish_news(
        self,
        actor_id: str,
        title: str,
        content: str,
        type: NewsType = NewsType.NEWS,
        image_url: str | None = None,
    ) -> NewsAlert:
        self._require_admin(self.collection("users"), actor_id)
        news = self.collection("news")
        alert = NewsAlert(
            id=new_record_id(),
            title=title,
            content=content,
            type=type,
            image_url=image_url,
            published_at=self._clock(),
            author_id=actor_id,
            sync_state=SyncState.PENDING,
        )
        refs = [_ref(news, alert.id)]
        with self._rollback_on_reject(news):
            news.add(alert)
            news.save()
            result = self._submit(
                ActionKind.CREATE, "/api/news", HttpMethod.POST, model_to_wire(alert), refs
            )
        return self._settle(result, refs, created=True)

    # -- Helpers ---------------------------------------------------------

    def _require_admin(self, users: Collection[Any], actor_id: str) -> User:
        actor = users.get(actor_id)
        if actor is None or not actor.is_admin:
            raise NotAuthorizedError(f"User {actor_id} is not an administrator")
        return actor

    def _transaction(self, **fields: Any) -> Transaction:
        return Transaction(
            id=new_record_id(),
            timestamp=self._clock(),
            sync_state=SyncState.PENDING,
            **fields,
        )

    def _update_record(
        self,
        records: Collection[Any],
        record_id: str,
        endpoint: str,
        changes: dict[str, Any],
    ) -> Any:
        current = records.require(record_id)
        unknown = set(changes) - (set(type(current).model_fields) - {"id", "sync_state"})
        if unknown:
            raise ApplicationError(f"Cannot update {records.name} fields: {sorted(unknown)}")
        refs = [_ref(records, str(record_id))]
        with self._rollback_on_reject(records):
            updated = records.update(record_id, sync_state=SyncState.PENDING, **changes)
            records.save()
            result = self._submit(
                ActionKind.UPDATE,
                endpoint,
                HttpMethod.PUT,
                _changes_to_wire(updated, changes),
                refs,
            )
        return self._settle(result, refs)

    def _delete_record(self, records: Collection[Any], record_id: str, endpoint: str) -> None:
        record = records.require(record_id)
        with self._rollback_on_reject(records):
            records.remove(record.id)
            records.save()
            result = self._submit(
                ActionKind.DELETE, endpoint, HttpMethod.DELETE, None, [_ref(records, record.id)]
            )
        logger.info("Deleted %s %s%s", records.name, record.id, " (queued)" if result.is_queued else "")

    def _submit(
        self,
        kind: ActionKind,
        endpoint: str,
        method: HttpMethod,
        payload: dict[str, Any] | None,
        refs: list[RecordRef],
    ) -> MutationResult:
        return self._gateway.submit(
            Mutation(kind=kind, endpoint=endpoint, method=method, payload=payload, records=refs)
        )

    def _settle(self, result: MutationResult, refs: list[RecordRef], created: bool = False) -> Any:
        """Confirm the touched records if the mutation reached the server.

        For a create, the first (primary) record takes the server's id.
        Returns the current state of the primary record.
        """
        primary = refs[0]
        if not result.is_queued:
            for ref in refs:
                self.mark_sync_state(ref, SyncState.CONFIRMED)
            server_id = _server_id(result.response_body) if created else None
            if server_id is not None:
                self.adopt_server_id(primary, server_id)
                primary = primary.model_copy(update={"record_id": server_id})
        return self.collection(primary.collection).require(primary.record_id)

    @contextmanager
    def _rollback_on_reject(self, *collections: Collection[Any]) -> Iterator[None]:
        snapshots = [(c.name, self._cache.get_collection(c.name)) for c in collections]
        try:
            yield
        except RequestRejectedError:
            for name, items in snapshots:
                self._cache.set_collection(name, items)
            logger.warning("Server rejected change, rolled back %s", [name for name, _ in snapshots])
            raise


def _changes_to_wire(record: BaseModel, changes: dict[str, Any]) -> dict[str, Any]:
    """The changed fields of ``record`` in API form."""
    dumped = record.model_dump(mode="json")
    return dict_to_wire({key: dumped[key] for key in changes})
