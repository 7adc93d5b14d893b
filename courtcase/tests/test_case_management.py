"""
Tests for Case Management
=========================

Tests for:
- Case CRUD through CaseRepository
- Ownership and permission checks on every operation
- Soft delete / restore / permanent delete lifecycle
- Case number generation
- Store failures surfacing as BackendError
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add parent to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from courtcase.auth import AuthContext
from courtcase.db.models import ActivityLog, Case
from courtcase.errors import BackendError, Forbidden, NotFound, Unauthenticated, ValidationError
from courtcase.repository import (
    CaseRepository,
    case_number_pattern,
    generate_case_number,
)
from courtcase.schemas import CaseStatus, CreateCaseRequest, UpdateCaseRequest
from courtcase.triggers import ActivityLogTrigger


# =============================================================================
# Fixtures
# =============================================================================

ALICE = AuthContext(user_id="user-alice", email="alice@firm.test", name="Alice")
BOB = AuthContext(user_id="user-bob", email="bob@firm.test", name="Bob")


class SteppingClock:
    """Returns T0, T0+1s, T0+2s, ... so write order is observable in timestamps"""

    def __init__(self, start=datetime(2024, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self):
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def sqlalchemy_db(tmp_path):
    """Configure a fresh SQLAlchemy SQLite DB for tests."""
    from courtcase.db.session import reset_engine, init_db

    old_db_url = os.environ.get("DATABASE_URL")
    db_path = tmp_path / "cases.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    reset_engine()
    init_db()

    yield

    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


@pytest.fixture
def repository(sqlalchemy_db):
    from courtcase.db.session import session_factory
    return CaseRepository(session_factory, clock=SteppingClock())


def _new_case(**overrides):
    fields = {
        "client_name": "John Smith",
        "current_summary": "Charged with burglary",
    }
    fields.update(overrides)
    return fields


# =============================================================================
# Create / Read
# =============================================================================

class TestCreateCase:

    def test_create_sets_owner_defaults_and_timestamps(self, repository):
        record = repository.create_case(ALICE, _new_case())

        assert record.id
        assert record.user_id == ALICE.user_id
        assert record.status == CaseStatus.OPEN
        assert record.is_deleted is False
        assert record.deleted_at is None
        assert record.is_primary and record.can_write and record.can_export
        assert record.created_at == record.updated_at
        assert record.created_at.tzinfo is not None

    def test_generated_case_number_matches_format(self, repository):
        record = repository.create_case(ALICE, _new_case())
        assert case_number_pattern("CASE").match(record.case_number)

    def test_explicit_case_number_is_kept(self, repository):
        record = repository.create_case(ALICE, _new_case(case_number="CR-2024-0042"))
        assert record.case_number == "CR-2024-0042"

    def test_accepts_request_model(self, repository):
        request = CreateCaseRequest(
            client_name="Jane Doe",
            current_summary="DUI",
            client={"first_name": "Jane", "last_name": "Doe", "email": "jane@example.com"},
        )
        record = repository.create_case(ALICE, request)

        assert record.client.email == "jane@example.com"
        assert record.client.phone == ""

    def test_client_name_derived_from_client(self, repository):
        record = repository.create_case(ALICE, {
            "current_summary": "Assault",
            "client": {"first_name": "Mary", "last_name": "Jones"},
        })
        assert record.client_name == "Mary Jones"

    def test_protected_fields_are_ignored(self, repository):
        record = repository.create_case(ALICE, _new_case(user_id=BOB.user_id, is_deleted=True, id="forced"))

        assert record.user_id == ALICE.user_id
        assert record.is_deleted is False
        assert record.id != "forced"

    def test_missing_required_fields(self, repository):
        with pytest.raises(ValidationError) as exc:
            repository.create_case(ALICE, {"client_name": "", "current_summary": " "})

        assert exc.value.fields == {
            "client_name": "Client name is required",
            "current_summary": "Case summary is required",
        }

    def test_invalid_client_contact(self, repository):
        with pytest.raises(ValidationError) as exc:
            repository.create_case(ALICE, _new_case(client={"email": "not-an-email", "phone": "12"}))

        assert exc.value.fields["client.email"] == "Invalid email address"
        assert exc.value.fields["client.phone"] == "Invalid phone number"

    def test_cannot_create_deleted(self, repository):
        with pytest.raises(ValidationError):
            repository.create_case(ALICE, _new_case(status="Deleted"))

    def test_unknown_status(self, repository):
        with pytest.raises(ValidationError) as exc:
            repository.create_case(ALICE, _new_case(status="Archived"))
        assert "status" in exc.value.fields

    def test_bad_case_date(self, repository):
        with pytest.raises(ValidationError) as exc:
            repository.create_case(ALICE, _new_case(case_date="next tuesday"))
        assert "case_date" in exc.value.fields

    def test_case_date_iso_string(self, repository):
        record = repository.create_case(ALICE, _new_case(case_date="2024-05-01T10:00:00Z"))
        assert record.case_date == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_created_hooks_run_after_commit(self, repository):
        seen = []
        repository.add_created_hook(seen.append)

        record = repository.create_case(ALICE, _new_case())

        assert [r.id for r in seen] == [record.id]

    def test_failing_hook_does_not_fail_create(self, repository):
        seen = []

        def broken(record):
            raise RuntimeError("hook bug")

        repository.add_created_hook(broken)
        repository.add_created_hook(seen.append)

        record = repository.create_case(ALICE, _new_case())

        assert [r.id for r in seen] == [record.id]
        assert repository.get_case(ALICE, record.id).id == record.id


class TestReadCases:

    def test_get_case_round_trip(self, repository):
        created = repository.create_case(ALICE, _new_case(relevant_laws="Penal Code 459"))
        fetched = repository.get_case(ALICE, created.id)

        assert fetched == created
        assert fetched.relevant_laws == "Penal Code 459"

    def test_get_missing_case(self, repository):
        with pytest.raises(NotFound):
            repository.get_case(ALICE, "does-not-exist")

    def test_list_is_owner_only_and_newest_first(self, repository):
        first = repository.create_case(ALICE, _new_case(client_name="First"))
        second = repository.create_case(ALICE, _new_case(client_name="Second"))
        repository.create_case(BOB, _new_case(client_name="Bob's"))
        third = repository.create_case(ALICE, _new_case(client_name="Third"))

        ids = [c.id for c in repository.list_cases(ALICE)]
        assert ids == [third.id, second.id, first.id]

    def test_list_follows_updated_at(self, repository):
        first = repository.create_case(ALICE, _new_case(client_name="First"))
        second = repository.create_case(ALICE, _new_case(client_name="Second"))
        repository.update_case(ALICE, first.id, {"current_summary": "Arraignment moved"})

        ids = [c.id for c in repository.list_cases(ALICE)]
        assert ids == [first.id, second.id]

    def test_list_empty(self, repository):
        assert repository.list_cases(BOB) == []


# =============================================================================
# Identity and permission checks
# =============================================================================

class TestAccessControl:

    @pytest.fixture
    def alice_case(self, repository):
        return repository.create_case(ALICE, _new_case())

    @pytest.mark.parametrize("call", [
        lambda repo, case_id: repo.get_case(BOB, case_id),
        lambda repo, case_id: repo.update_case(BOB, case_id, {"client_name": "Mallory"}),
        lambda repo, case_id: repo.update_case(BOB, case_id, {"client": {"email": "nope"}}),
        lambda repo, case_id: repo.soft_delete_case(BOB, case_id),
        lambda repo, case_id: repo.restore_case(BOB, case_id),
        lambda repo, case_id: repo.permanently_delete_case(BOB, case_id),
        lambda repo, case_id: repo.export_case(BOB, case_id),
    ])
    def test_other_user_is_forbidden(self, repository, alice_case, call):
        with pytest.raises(Forbidden) as exc:
            call(repository, alice_case.id)
        assert exc.value.reason == Forbidden.OWNERSHIP

        # Nothing changed
        assert repository.get_case(ALICE, alice_case.id) == alice_case

    @pytest.mark.parametrize("call", [
        lambda repo, case_id: repo.list_cases(None),
        lambda repo, case_id: repo.get_case(None, case_id),
        lambda repo, case_id: repo.create_case(None, _new_case()),
        lambda repo, case_id: repo.update_case(None, case_id, {}),
        lambda repo, case_id: repo.soft_delete_case(None, case_id),
        lambda repo, case_id: repo.restore_case(None, case_id),
        lambda repo, case_id: repo.permanently_delete_case(None, case_id),
    ])
    def test_no_identity_is_unauthenticated(self, repository, alice_case, call):
        with pytest.raises(Unauthenticated) as exc:
            call(repository, alice_case.id)
        assert exc.value.message == "User not authenticated"

    def test_not_found_before_ownership(self, repository):
        with pytest.raises(NotFound):
            repository.update_case(BOB, "missing", {"client_name": "x"})

    def test_missing_case_checked_before_payload(self, repository):
        with pytest.raises(NotFound):
            repository.update_case(BOB, "missing", {"client": {"email": "nope"}})

    def test_read_only_case_checked_before_payload(self, repository, alice_case):
        repository.update_case(ALICE, alice_case.id, {"can_write": False})

        with pytest.raises(Forbidden) as exc:
            repository.update_case(ALICE, alice_case.id, {"client": {"phone": "abc"}})
        assert exc.value.reason == Forbidden.WRITE_PERMISSION

    def test_read_only_case_rejects_writes(self, repository, alice_case):
        repository.update_case(ALICE, alice_case.id, {"can_write": False})

        with pytest.raises(Forbidden) as exc:
            repository.update_case(ALICE, alice_case.id, {"client_name": "Changed"})
        assert exc.value.reason == Forbidden.WRITE_PERMISSION
        assert "update" in exc.value.message

        with pytest.raises(Forbidden) as exc:
            repository.soft_delete_case(ALICE, alice_case.id)
        assert exc.value.reason == Forbidden.WRITE_PERMISSION

        # Still readable
        assert repository.get_case(ALICE, alice_case.id).client_name == "John Smith"

    def test_export_requires_flag(self, repository, alice_case):
        exported = repository.export_case(ALICE, alice_case.id)
        assert exported["id"] == alice_case.id
        assert exported["status"] == "Open"

        repository.update_case(ALICE, alice_case.id, {"can_export": False})
        with pytest.raises(Forbidden) as exc:
            repository.export_case(ALICE, alice_case.id)
        assert exc.value.reason == Forbidden.EXPORT_PERMISSION


# =============================================================================
# Update
# =============================================================================

class TestUpdateCase:

    def test_partial_update_merges(self, repository):
        created = repository.create_case(ALICE, _new_case(client={"first_name": "John", "email": "j@x.com"}))

        updated = repository.update_case(ALICE, created.id, UpdateCaseRequest(
            witness_preparation="Prep neighbor",
            client={"phone": "555-010-2030"},
        ))

        assert updated.witness_preparation == "Prep neighbor"
        assert updated.client_name == "John Smith"
        assert updated.client.first_name == "John"
        assert updated.client.email == "j@x.com"
        assert updated.client.phone == "555-010-2030"
        assert updated.updated_at > created.updated_at
        assert updated.created_at == created.created_at

    def test_protected_fields_ignored(self, repository):
        created = repository.create_case(ALICE, _new_case())

        updated = repository.update_case(ALICE, created.id, {
            "id": "other-id",
            "user_id": BOB.user_id,
            "created_at": "2000-01-01T00:00:00Z",
            "is_deleted": True,
            "client_name": "Renamed",
        })

        assert updated.id == created.id
        assert updated.user_id == ALICE.user_id
        assert updated.created_at == created.created_at
        assert updated.is_deleted is False
        assert updated.client_name == "Renamed"

    def test_status_change(self, repository):
        created = repository.create_case(ALICE, _new_case())
        updated = repository.update_case(ALICE, created.id, {"status": "Pending"})
        assert updated.status == CaseStatus.PENDING

    def test_cannot_delete_through_status(self, repository):
        created = repository.create_case(ALICE, _new_case())
        with pytest.raises(ValidationError):
            repository.update_case(ALICE, created.id, {"status": "Deleted"})

    def test_cannot_change_status_of_trashed_case(self, repository):
        created = repository.create_case(ALICE, _new_case())
        repository.soft_delete_case(ALICE, created.id)
        with pytest.raises(ValidationError):
            repository.update_case(ALICE, created.id, {"status": "Open"})

    def test_invalid_client_email(self, repository):
        created = repository.create_case(ALICE, _new_case())
        with pytest.raises(ValidationError) as exc:
            repository.update_case(ALICE, created.id, {"client": {"email": "nope"}})
        assert exc.value.fields == {"client.email": "Invalid email address"}

    def test_last_write_wins(self, repository):
        created = repository.create_case(ALICE, _new_case())
        repository.update_case(ALICE, created.id, {"legal_strategy": "Suppress evidence"})
        repository.update_case(ALICE, created.id, {"legal_strategy": "Plea bargain"})

        assert repository.get_case(ALICE, created.id).legal_strategy == "Plea bargain"


# =============================================================================
# Lifecycle
# =============================================================================

class TestLifecycle:

    def test_soft_delete_hides_from_list(self, repository):
        created = repository.create_case(ALICE, _new_case())
        deleted = repository.soft_delete_case(ALICE, created.id)

        assert deleted.is_deleted is True
        assert deleted.status == CaseStatus.DELETED
        assert deleted.deleted_at is not None
        assert repository.list_cases(ALICE) == []

        # Still readable by id
        assert repository.get_case(ALICE, created.id).is_deleted is True

    def test_restore_round_trip(self, repository):
        created = repository.create_case(ALICE, _new_case(status="Pending"))
        repository.soft_delete_case(ALICE, created.id)
        restored = repository.restore_case(ALICE, created.id)

        assert restored.is_deleted is False
        assert restored.deleted_at is None
        assert restored.status == CaseStatus.OPEN
        assert [c.id for c in repository.list_cases(ALICE)] == [created.id]

    def test_restore_untrashed_case_is_noop(self, repository):
        created = repository.create_case(ALICE, _new_case())
        restored = repository.restore_case(ALICE, created.id)
        assert restored == created

    def test_permanent_delete(self, repository):
        created = repository.create_case(ALICE, _new_case())
        repository.soft_delete_case(ALICE, created.id)

        assert repository.permanently_delete_case(ALICE, created.id) == created.id
        with pytest.raises(NotFound):
            repository.get_case(ALICE, created.id)
        assert repository.list_cases(ALICE) == []

    def test_repeated_restore_is_idempotent(self, repository):
        created = repository.create_case(ALICE, _new_case())
        repository.soft_delete_case(ALICE, created.id)
        first = repository.restore_case(ALICE, created.id)
        second = repository.restore_case(ALICE, created.id)
        assert second == first

    def test_permanent_delete_requires_trash(self, repository):
        created = repository.create_case(ALICE, _new_case())
        with pytest.raises(ValidationError):
            repository.permanently_delete_case(ALICE, created.id)
        assert repository.get_case(ALICE, created.id).id == created.id


# =============================================================================
# Case numbers, triggers, store failures
# =============================================================================

class TestCaseNumbers:

    def test_format(self):
        number = generate_case_number("CASE", now_ms=1717000123456)
        assert number.startswith("CASE-123456-")
        assert case_number_pattern().match(number)

    def test_custom_prefix(self, sqlalchemy_db):
        from courtcase.db.session import session_factory
        repo = CaseRepository(session_factory, case_number_prefix="DEF")
        record = repo.create_case(ALICE, _new_case())
        assert case_number_pattern("DEF").match(record.case_number)


class TestActivityLogTrigger:

    def test_creation_writes_activity_log(self, sqlalchemy_db):
        from courtcase.db.session import get_db_session, session_factory

        repo = CaseRepository(session_factory, on_created=[ActivityLogTrigger(session_factory)])
        record = repo.create_case(ALICE, _new_case())

        with get_db_session() as db:
            entries = db.query(ActivityLog).all()
            assert len(entries) == 1
            assert entries[0].action == "case_created"
            assert entries[0].case_id == record.id
            assert entries[0].user_id == ALICE.user_id

    def test_trigger_failure_keeps_case(self, sqlalchemy_db, tmp_path):
        from sqlalchemy import create_engine
        from sqlalchemy.orm import sessionmaker
        from courtcase.db.session import session_factory

        # Empty database: the activity_logs table does not exist there
        broken = sessionmaker(bind=create_engine(f"sqlite:///{tmp_path / 'empty.db'}"))
        trigger = ActivityLogTrigger(broken)
        repo = CaseRepository(session_factory, on_created=[trigger])

        record = repo.create_case(ALICE, _new_case())

        assert repo.get_case(ALICE, record.id).id == record.id
        assert trigger(record) is False


class TestBackendErrors:

    def test_missing_tables_surface_as_backend_error(self, tmp_path):
        from sqlalchemy import create_engine
        from sqlalchemy.orm import sessionmaker

        broken = sessionmaker(bind=create_engine(f"sqlite:///{tmp_path / 'empty.db'}"))
        repo = CaseRepository(broken)

        with pytest.raises(BackendError) as exc:
            repo.list_cases(ALICE)
        assert "cases" in exc.value.message

    def test_get_case_store_failure(self, tmp_path):
        from sqlalchemy import create_engine
        from sqlalchemy.orm import sessionmaker

        broken = sessionmaker(bind=create_engine(f"sqlite:///{tmp_path / 'empty.db'}"))
        with pytest.raises(BackendError):
            CaseRepository(broken).get_case(ALICE, "any")

    def test_rows_are_persisted(self, repository):
        from courtcase.db.session import get_db_session

        record = repository.create_case(ALICE, _new_case())
        with get_db_session() as db:
            row = db.get(Case, record.id)
            assert row.user_id == ALICE.user_id
            assert row.status == CaseStatus.OPEN
