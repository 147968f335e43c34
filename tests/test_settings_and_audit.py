"""Tests for configuration loading and the audit logger."""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from savings_challenge.audit import AuditLogger, create_correlation_id
from savings_challenge.config import (
    AppSettings,
    ChallengeSettings,
    get_settings,
    validate_all_settings,
)
from savings_challenge.models.audit import AuditEventBuilder
from savings_challenge.services.storage import InMemoryDocumentStore, StorageError


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CHALLENGE_MIN_DAYS", raising=False)
        settings = ChallengeSettings()
        assert settings.min_days == 7
        assert settings.code_length == 6
        assert settings.challenges_collection == "challenges"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("CHALLENGE_MIN_DAYS", "14")
        monkeypatch.setenv("CHALLENGE_CONFLICT_MAX_ATTEMPTS", "2")
        settings = ChallengeSettings()
        assert settings.min_days == 14
        assert settings.conflict_max_attempts == 2

    def test_code_length_bounds(self, monkeypatch):
        monkeypatch.setenv("CHALLENGE_CODE_LENGTH", "2")
        with pytest.raises(ValidationError):
            ChallengeSettings()

    def test_unknown_storage_backend(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "postgres")
        with pytest.raises(ValidationError):
            AppSettings()

    def test_validate_all_settings(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "memory")
        assert validate_all_settings()["challenge"] is True

    def test_validate_all_settings_reports_bad_range(self, monkeypatch):
        monkeypatch.setenv("CHALLENGE_MIN_DAYS", "400")
        monkeypatch.setenv("CHALLENGE_MAX_DAYS", "300")
        results = validate_all_settings()
        assert results["challenge"] is False
        assert "min_days" in results["challenge_error"]


class BrokenStore(InMemoryDocumentStore):
    async def put(self, collection, doc_id, document):
        raise StorageError("disk full")


class TestAuditLogger:
    """Tests for audit persistence."""

    @pytest.mark.asyncio
    async def test_event_persisted(self):
        store = InMemoryDocumentStore()
        logger = AuditLogger(store, collection="audit")
        correlation_id = create_correlation_id()

        await logger.log_participant_joined("ABC123", "bob", correlation_id)

        [document] = await store.list_documents("audit")
        assert document["event_type"] == "participant_joined"
        assert document["actor_id"] == "bob"
        assert document["correlation_id"] == str(correlation_id)

    @pytest.mark.asyncio
    async def test_local_only_logger(self):
        event = AuditEventBuilder.level_up("bob", 1, 2, "Aprendiz", uuid4())
        assert await AuditLogger().log(event) is True

    @pytest.mark.asyncio
    async def test_store_failure_is_not_raised(self):
        """Test a failing audit write never breaks the caller."""
        event = AuditEventBuilder.system_error("boom", "details")
        assert await AuditLogger(BrokenStore()).log(event) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
