"""
Tests for the ChallengeService flows

All flows run against the in-memory store. Concurrent writers are
simulated by running a second service right before a chosen read, i.e.
between another writer's read and its commit.
"""

import pytest

from savings_challenge.audit import AuditLogger
from savings_challenge.config import ChallengeSettings
from savings_challenge.core.aggregate import new_challenge
from savings_challenge.core.errors import (
    AlreadyPaidError,
    CellNotFoundError,
    InsufficientBalanceError,
    InvalidScheduleError,
)
from savings_challenge.core.progression import MILESTONES
from savings_challenge.orchestrator import ChallengeService, create_app_components
from savings_challenge.services.storage import (
    ConflictError,
    IdCollisionError,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
)


class InterleavingStore(InMemoryDocumentStore):
    """Runs a hook right before the n-th read of a challenge document."""

    def __init__(self):
        super().__init__()
        self._hook = None
        self._countdown = 0

    def interleave(self, hook, on_get=2):
        self._hook = hook
        self._countdown = on_get

    async def get(self, collection, doc_id):
        if self._hook is not None and collection == "challenges":
            self._countdown -= 1
            if self._countdown == 0:
                hook, self._hook = self._hook, None
                await hook()
        return await super().get(collection, doc_id)


class FlakyUsersStore(InMemoryDocumentStore):
    """Fails every user document write while `fail_users` is set."""

    def __init__(self):
        super().__init__()
        self.fail_users = True

    async def put(self, collection, doc_id, document):
        if collection == "users" and self.fail_users:
            raise StorageError(f"Failed to put {collection}/{doc_id}: timeout")
        await super().put(collection, doc_id, document)


def make_service(store, **settings) -> ChallengeService:
    return ChallengeService(
        store=store,
        audit_logger=AuditLogger(store),
        settings=ChallengeSettings(**settings),
    )


async def audit_types(store):
    return [event["event_type"] for event in await store.list_documents("audit")]


@pytest.fixture
def store():
    return InterleavingStore()


@pytest.fixture
def service(store):
    return make_service(store)


@pytest.fixture
def other_service(store):
    return make_service(store)


async def pay_all(service, challenge, payer):
    results = []
    for cell in challenge.cells:
        results.append(await service.mark_cell_paid(challenge.id, cell.id, payer))
    return results


class TestCreateChallenge:
    """Tests for creating challenges."""

    @pytest.mark.asyncio
    async def test_create_stores_challenge(self, service, store):
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")

        assert len(challenge.id) == 6
        assert challenge.participants == ["alice"]
        assert sum(cell.amount for cell in challenge.cells) == 1000
        assert await service.get_challenge(challenge.id) == challenge
        assert "challenge_created" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_lookup_is_case_insensitive(self, service):
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        found = await service.get_challenge(f"  {challenge.id.lower()} ")
        assert found.id == challenge.id

    @pytest.mark.asyncio
    async def test_too_few_days_rejected(self, service, store):
        with pytest.raises(InvalidScheduleError):
            await service.create_challenge("Corto", 60, 3, "alice")
        assert await store.list_documents("challenges") == []

    @pytest.mark.asyncio
    async def test_too_many_days_rejected(self, store):
        service = make_service(store, max_days=30)
        with pytest.raises(InvalidScheduleError, match="at most 30 days"):
            await service.create_challenge("Largo", 3650, 365, "alice")

    @pytest.mark.asyncio
    async def test_taken_code_is_redrawn(self, store):
        """Test a code collision draws a new code instead of overwriting."""
        codes = iter(["TAKEN1", "TAKEN1", "FRESH1"])
        service = ChallengeService(
            store=store,
            audit_logger=AuditLogger(store),
            settings=ChallengeSettings(),
            code_factory=lambda length: next(codes),
        )
        first = await service.create_challenge("Uno", 1000, 10, "alice")
        second = await service.create_challenge("Dos", 1000, 10, "bob")

        assert first.id == "TAKEN1"
        assert second.id == "FRESH1"
        assert (await service.get_challenge("TAKEN1")).name == "Uno"
        assert "code_collision" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_collisions_exhaust_attempts(self, store):
        service = ChallengeService(
            store=store,
            settings=ChallengeSettings(code_max_attempts=3),
            code_factory=lambda length: "SAME01",
        )
        await service.create_challenge("Uno", 1000, 10, "alice")
        with pytest.raises(IdCollisionError):
            await service.create_challenge("Dos", 1000, 10, "bob")
        assert (await service.get_challenge("SAME01")).name == "Uno"

    @pytest.mark.asyncio
    async def test_unknown_code(self, service):
        with pytest.raises(NotFoundError):
            await service.get_challenge("NOPE99")


class TestJoinChallenge:

    @pytest.mark.asyncio
    async def test_join_adds_participant(self, service, store):
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        joined = await service.join_challenge(challenge.id, "bob")

        assert joined.participants == ["alice", "bob"]
        assert joined.revision == 1
        assert "participant_joined" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_join_twice_writes_nothing(self, service):
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        await service.join_challenge(challenge.id, "bob")
        again = await service.join_challenge(challenge.id, "bob")

        assert again.participants == ["alice", "bob"]
        assert again.revision == 1

    @pytest.mark.asyncio
    async def test_list_challenges_for_member(self, service):
        first = await service.create_challenge("Uno", 1000, 10, "alice")
        second = await service.create_challenge("Dos", 1000, 10, "bob")
        await service.join_challenge(second.id, "alice")
        await service.create_challenge("Tres", 1000, 10, "carol")

        mine = await service.list_challenges_for("alice")
        assert [c.id for c in mine] == [first.id, second.id]
        assert await service.list_challenges_for("dave") == []

    @pytest.mark.asyncio
    async def test_short_code_from_another_client(self, service, store):
        """Test a challenge stored under a 3-character code is usable."""
        challenge = new_challenge("Viaje", 1000, 10, "alice", code="k3p")
        await store.put("challenges", challenge.id, challenge.to_document())

        assert [c.id for c in await service.list_challenges_for("alice")] == ["K3P"]
        joined = await service.join_challenge("k3p", "bob")
        assert joined.participants == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_corrupt_document_is_skipped(self, service, store):
        challenge = await service.create_challenge("Uno", 1000, 10, "alice")
        await store.put("challenges", "BROKEN", {"id": "BROKEN", "participants": ["alice"]})

        mine = await service.list_challenges_for("alice")
        assert [c.id for c in mine] == [challenge.id]


class TestMarkCellPaid:
    """Tests for the payment flow."""

    @pytest.mark.asyncio
    async def test_payment_credits_xp(self, service, store):
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        cell = challenge.cells[0]

        result = await service.mark_cell_paid(challenge.id, 0, "bob", receipt_url="r/1.jpg")

        assert result.amount == cell.amount
        assert result.progress_synced is True
        assert result.progress.xp == cell.amount
        assert result.challenge.streak == 1
        assert result.challenge.revision == 1

        stored = await service.get_challenge(challenge.id)
        assert stored.cells[0].paid_by == "bob"
        assert stored.cells[0].receipt_url == "r/1.jpg"
        assert (await service.get_progress("bob")).xp == cell.amount
        assert "cell_paid" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_double_payment_rejected(self, service):
        """Test a second payment changes nothing and credits no xp."""
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        first = await service.mark_cell_paid(challenge.id, 0, "bob")

        with pytest.raises(AlreadyPaidError):
            await service.mark_cell_paid(challenge.id, 0, "carol")

        stored = await service.get_challenge(challenge.id)
        assert stored.streak == 1
        assert stored.cells[0].paid_by == "bob"
        assert (await service.get_progress("bob")).xp == first.amount
        assert (await service.get_progress("carol")).xp == 0

    @pytest.mark.asyncio
    async def test_unknown_cell(self, service):
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        with pytest.raises(CellNotFoundError):
            await service.mark_cell_paid(challenge.id, 10, "bob")

    @pytest.mark.asyncio
    async def test_paying_everything(self, service, store):
        """Test milestones, level up and the final balance."""
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        results = await pay_all(service, challenge, "bob")

        milestones = tuple(m for r in results for m in r.milestones)
        assert milestones == MILESTONES
        assert any(r.leveled_up for r in results)

        progress = await service.get_progress("bob")
        assert progress.xp == 1000
        assert progress.level == 2

        stored = await service.get_challenge(challenge.id)
        assert stored.is_complete is True
        assert stored.available_balance == 1000
        assert stored.streak == 10

        events = await audit_types(store)
        assert events.count("milestone_reached") == len(MILESTONES)
        assert "level_up" in events

    @pytest.mark.asyncio
    async def test_profile_fields_survive_xp_write(self, service, store):
        await store.put("users", "bob", {
            "id": "bob", "name": "Bob", "xp": 0, "level": 1, "activeSkin": "bottts",
        })
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        await service.mark_cell_paid(challenge.id, 0, "bob")

        document = await store.get("users", "bob")
        assert document["activeSkin"] == "bottts"
        assert document["name"] == "Bob"
        assert document["xp"] == challenge.cells[0].amount


class TestConcurrentWriters:
    """Tests for stale writes between read and commit."""

    @pytest.mark.asyncio
    async def test_concurrent_payment_of_same_cell(self, service, other_service, store):
        """Test the loser sees AlreadyPaidError instead of overwriting."""
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        store.interleave(lambda: other_service.mark_cell_paid(challenge.id, 0, "carol"))

        with pytest.raises(AlreadyPaidError):
            await service.mark_cell_paid(challenge.id, 0, "bob")

        stored = await service.get_challenge(challenge.id)
        assert stored.cells[0].paid_by == "carol"
        assert stored.streak == 1
        assert (await service.get_progress("bob")).xp == 0
        assert "write_conflict" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_concurrent_join_is_kept(self, service, other_service, store):
        """Test a retried payment keeps a participant who joined meanwhile."""
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        store.interleave(lambda: other_service.join_challenge(challenge.id, "carol"))

        result = await service.mark_cell_paid(challenge.id, 1, "bob")

        stored = await service.get_challenge(challenge.id)
        assert stored.participants == ["alice", "carol"]
        assert stored.cells[1].paid_by == "bob"
        assert stored.revision == 2
        assert result.challenge == stored

    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_cannot_overspend(self, service, other_service, store):
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        await pay_all(service, challenge, "alice")
        store.interleave(
            lambda: other_service.add_withdrawal(challenge.id, 700, "Pasajes", "carol")
        )

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await service.add_withdrawal(challenge.id, 500, "Hotel", "bob")

        assert exc_info.value.available == 300
        stored = await service.get_challenge(challenge.id)
        assert [w.amount for w in stored.withdrawals] == [700]
        assert stored.available_balance == 300

    @pytest.mark.asyncio
    async def test_endless_conflicts_give_up(self, store):
        service = make_service(store, conflict_max_attempts=3)
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")

        async def bump_revision():
            document = await store.get("challenges", challenge.id)
            document["revision"] += 1
            await store.put("challenges", challenge.id, document)
            store.interleave(bump_revision)

        store.interleave(bump_revision)
        with pytest.raises(ConflictError):
            await service.join_challenge(challenge.id, "bob")

        assert (await audit_types(store)).count("write_conflict") == 3
        assert "bob" not in (await store.get("challenges", challenge.id))["participants"]


class TestWithdrawals:

    @pytest.mark.asyncio
    async def test_withdrawal_reduces_balance(self, service, store):
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        await pay_all(service, challenge, "alice")

        updated = await service.add_withdrawal(challenge.id, 250, "Pasajes", "bob")

        assert updated.available_balance == 750
        assert updated.withdrawals[0].withdrawn_by == "bob"
        assert "withdrawal_added" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_overdraw_rejected_and_audited(self, service, store):
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        payment = await service.mark_cell_paid(challenge.id, 0, "alice")

        with pytest.raises(InsufficientBalanceError):
            await service.add_withdrawal(challenge.id, payment.amount + 10, "", "bob")

        stored = await service.get_challenge(challenge.id)
        assert stored.withdrawals == []
        assert "withdrawal_rejected" in await audit_types(store)


class TestProgressResync:
    """Tests for the partial failure of the payment flow."""

    @pytest.mark.asyncio
    async def test_failed_xp_write_keeps_payment(self):
        store = FlakyUsersStore()
        service = make_service(store)
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")

        result = await service.mark_cell_paid(challenge.id, 0, "bob")

        assert result.progress_synced is False
        assert result.progress is None
        assert (await service.get_challenge(challenge.id)).cells[0].paid_by == "bob"
        assert await store.get("users", "bob") is None
        assert "progress_sync_failed" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_corrupt_user_document_keeps_payment(self, service, store):
        """Test an unreadable user document is reported, not raised."""
        await store.put("users", "bob", {"id": "bob", "xp": "n/a", "level": 1})
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")

        result = await service.mark_cell_paid(challenge.id, 0, "bob")

        assert result.progress_synced is False
        assert result.progress is None
        assert (await service.get_challenge(challenge.id)).cells[0].paid_by == "bob"
        assert (await store.get("users", "bob"))["xp"] == "n/a"
        assert "progress_sync_failed" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_resync_repairs_and_is_idempotent(self):
        store = FlakyUsersStore()
        service = make_service(store)
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        first = await service.mark_cell_paid(challenge.id, 0, "bob")
        second = await service.mark_cell_paid(challenge.id, 1, "bob")

        store.fail_users = False
        repaired = await service.resync_progress("bob")
        again = await service.resync_progress("bob")

        expected = first.amount + second.amount
        assert repaired.xp == expected
        assert again.xp == expected
        assert (await service.get_progress("bob")).xp == expected
        assert "progress_resynced" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_resync_failure_is_raised_and_audited(self):
        store = FlakyUsersStore()
        service = make_service(store)
        challenge = await service.create_challenge("Viaje", 1000, 10, "alice")
        await service.mark_cell_paid(challenge.id, 0, "bob")

        with pytest.raises(StorageError):
            await service.resync_progress("bob")
        assert "system_error" in await audit_types(store)


class TestAppComponents:

    def test_default_components_use_memory_store(self):
        service, audit_logger = create_app_components(InMemoryDocumentStore())
        assert isinstance(service, ChallengeService)
        assert isinstance(audit_logger, AuditLogger)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
