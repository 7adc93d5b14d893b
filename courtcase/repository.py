"""
Case Repository
===============

Data access for cases. Every operation takes the requester's identity as its
first argument and checks, in order:

1. identity present          -> Unauthenticated
2. case exists               -> NotFound
3. identity owns the case    -> Forbidden (reason "ownership")
4. case is writable (writes) -> Forbidden (reason "write_permission")

Store failures are rolled back and surfaced as BackendError with the store's
message. Nothing is retried.

Updates are a read followed by a partial write with no version check, so two
overlapping writers to the same case resolve last-write-wins.
"""

import logging
import re
import secrets
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import AuthContext
from .db.models import Case
from .errors import BackendError, Forbidden, NotFound, Unauthenticated, ValidationError
from .schemas import CaseRecord, CaseStatus, ClientInfo, WORKFLOW_FIELDS
from .validation import derive_client_name, validate_case_changes, validate_new_case

logger = logging.getLogger(__name__)

DEFAULT_CASE_NUMBER_PREFIX = "CASE"

# Free-text columns a caller may set on create or update
CONTENT_FIELDS = ["case_number", "client_name", "current_summary", *WORKFLOW_FIELDS]

# Flags a caller may change on update
FLAG_FIELDS = ["is_primary", "can_write", "can_export"]

# Never taken from a caller payload
PROTECTED_FIELDS = {"id", "user_id", "created_at", "updated_at", "is_deleted", "deleted_at"}

CLIENT_FIELDS = list(ClientInfo.model_fields.keys())

CaseCreatedHook = Callable[[CaseRecord], Any]


# =============================================================================
# HELPERS
# =============================================================================

def utcnow() -> datetime:
    """Naive UTC now, the representation stored in DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _truncate_ms(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def _to_store_timestamp(value: Any) -> Optional[datetime]:
    """Accept datetime or ISO string; store as naive UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("Invalid date", fields={"case_date": "Invalid date"})
    if not isinstance(value, datetime):
        raise ValidationError("Invalid date", fields={"case_date": "Invalid date"})
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return _truncate_ms(value)


def _to_record_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamp -> aware UTC datetime at millisecond precision"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return _truncate_ms(value)


def _parse_status(value: Any) -> CaseStatus:
    try:
        return CaseStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown status: {value}", fields={"status": "Invalid status"})


def generate_case_number(prefix: str = DEFAULT_CASE_NUMBER_PREFIX, now_ms: Optional[int] = None) -> str:
    """
    PREFIX-<last 6 digits of epoch ms>-<3 random digits>.

    Uniqueness is best effort: numbers are not checked against existing cases.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}-{str(now_ms)[-6:]}-{secrets.randbelow(1000):03d}"


def case_number_pattern(prefix: str = DEFAULT_CASE_NUMBER_PREFIX) -> "re.Pattern[str]":
    return re.compile(rf"^{re.escape(prefix)}-\d{{6}}-\d{{3}}$")


def _payload(fields: Any, exclude_unset: bool) -> Dict[str, Any]:
    if fields is None:
        return {}
    if isinstance(fields, BaseModel):
        return fields.model_dump(exclude_unset=exclude_unset)
    return dict(fields)


def _clean_client(client: Any) -> Dict[str, str]:
    """Known client keys with non-None values"""
    if client is None:
        return {}
    if isinstance(client, BaseModel):
        client = client.model_dump(exclude_unset=True)
    return {k: v for k, v in dict(client).items() if k in CLIENT_FIELDS and v is not None}


def _to_record(row: Case) -> CaseRecord:
    """
    The one conversion from a stored row to a CaseRecord.

    Every read path goes through here so all operations return the same shape.
    """
    client = {k: (row.client or {}).get(k) or "" for k in CLIENT_FIELDS}
    data = {field: getattr(row, field) or "" for field in CONTENT_FIELDS}
    return CaseRecord(
        id=row.id,
        case_date=_to_record_timestamp(row.case_date),
        status=row.status or CaseStatus.OPEN,
        is_deleted=bool(row.is_deleted),
        deleted_at=_to_record_timestamp(row.deleted_at),
        created_at=_to_record_timestamp(row.created_at),
        updated_at=_to_record_timestamp(row.updated_at),
        user_id=row.user_id or "",
        is_primary=bool(row.is_primary),
        can_write=bool(row.can_write),
        can_export=bool(row.can_export),
        client=ClientInfo(**client),
        **data,
    )


# =============================================================================
# REPOSITORY
# =============================================================================

class CaseRepository:
    """
    Case CRUD over a SQLAlchemy session factory.

    Construct once and inject; each operation opens and closes its own session.

    Args:
        session_factory: Zero-argument callable returning a Session
        clock: Returns naive UTC "now" for write timestamps (tests pin it)
        case_number_prefix: Prefix for generated case numbers
        on_created: Hooks called with each newly created record after commit;
            an exception from a hook is logged and does not fail the create
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Optional[Callable[[], datetime]] = None,
        case_number_prefix: str = DEFAULT_CASE_NUMBER_PREFIX,
        on_created: Optional[Iterable[CaseCreatedHook]] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or utcnow
        self.case_number_prefix = case_number_prefix
        self._on_created: List[CaseCreatedHook] = list(on_created or [])

    def add_created_hook(self, hook: CaseCreatedHook) -> None:
        self._on_created.append(hook)

    def _now(self) -> datetime:
        return _truncate_ms(self._clock())

    @contextmanager
    def _session(self, action: str):
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[cases] {action} error: {e}")
            raise BackendError(str(e)) from e
        finally:
            db.close()

    @staticmethod
    def _require_identity(identity: Optional[AuthContext]) -> AuthContext:
        if identity is None or not getattr(identity, "user_id", None):
            raise Unauthenticated()
        return identity

    @staticmethod
    def _load_owned(db: Session, identity: AuthContext, case_id: str,
                    write_action: Optional[str] = None) -> Case:
        row = db.get(Case, case_id)
        if row is None:
            raise NotFound()

        if row.user_id != identity.user_id:
            logger.warning(f"[cases] Access denied: {identity.user_id} cannot access case {case_id}")
            raise Forbidden("You do not have access to this case", reason=Forbidden.OWNERSHIP)

        if write_action and not row.can_write:
            logger.warning(f"[cases] Write denied: case {case_id} is read-only")
            raise Forbidden(
                f"You do not have permission to {write_action} this case",
                reason=Forbidden.WRITE_PERMISSION,
            )

        return row

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list_cases(self, identity: Optional[AuthContext]) -> List[CaseRecord]:
        """Requester's non-deleted cases, most recently updated first"""
        identity = self._require_identity(identity)
        with self._session("List cases") as db:
            rows = (
                db.query(Case)
                .filter(Case.user_id == identity.user_id, Case.is_deleted == False)  # noqa: E712
                .order_by(Case.updated_at.desc())
                .all()
            )
            return [_to_record(row) for row in rows]

    def get_case(self, identity: Optional[AuthContext], case_id: str) -> CaseRecord:
        """One case by id, soft-deleted or not"""
        identity = self._require_identity(identity)
        with self._session("Get case") as db:
            return _to_record(self._load_owned(db, identity, case_id))

    def export_case(self, identity: Optional[AuthContext], case_id: str) -> Dict[str, Any]:
        """JSON-ready copy of a case; requires can_export"""
        identity = self._require_identity(identity)
        with self._session("Export case") as db:
            row = self._load_owned(db, identity, case_id)
            if not row.can_export:
                raise Forbidden(
                    "You do not have permission to export this case",
                    reason=Forbidden.EXPORT_PERMISSION,
                )
            record = _to_record(row)

        logger.info(f"[cases] Exported case: {case_id}")
        return record.model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_case(self, identity: Optional[AuthContext], fields: Any = None) -> CaseRecord:
        """
        Create a case owned by the requester.

        Generates a case number when none is given. Status defaults to Open.
        Runs form validation first and the creation hooks after commit.
        """
        identity = self._require_identity(identity)

        data = _payload(fields, exclude_unset=False)
        data = {k: v for k, v in data.items() if k not in PROTECTED_FIELDS}
        data["client"] = _clean_client(data.get("client"))
        data = derive_client_name(data)
        validate_new_case(data)

        status = _parse_status(data.get("status") or CaseStatus.OPEN)
        if status == CaseStatus.DELETED:
            raise ValidationError("A new case cannot start out deleted", fields={"status": "Invalid status"})

        content = {f: data.get(f) or "" for f in CONTENT_FIELDS}
        content["case_number"] = content["case_number"].strip() or generate_case_number(self.case_number_prefix)

        now = self._now()
        with self._session("Create case") as db:
            row = Case(
                user_id=identity.user_id,
                status=status,
                case_date=_to_store_timestamp(data.get("case_date")),
                is_deleted=False,
                deleted_at=None,
                is_primary=True,
                can_write=True,
                can_export=True,
                client=data["client"],
                created_at=now,
                updated_at=now,
                **content,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            record = _to_record(row)

        logger.info(f"[cases] Created case: {record.id} ({record.case_number})")

        # The case is already committed; a failing hook is logged, never raised
        for hook in self._on_created:
            try:
                hook(record)
            except Exception:
                logger.exception(f"[cases] Created hook failed for case {record.id}")

        return record

    def update_case(self, identity: Optional[AuthContext], case_id: str, fields: Any) -> CaseRecord:
        """
        Merge the supplied fields into a case.

        id, user_id, created_at and the soft-delete fields are ignored if present.
        Status cannot be moved to or away from Deleted here; use soft delete/restore.
        """
        identity = self._require_identity(identity)

        data = _payload(fields, exclude_unset=True)
        ignored = PROTECTED_FIELDS.intersection(data)
        if ignored:
            logger.debug(f"[cases] Ignoring protected fields on update: {sorted(ignored)}")
        data = {k: v for k, v in data.items() if k not in PROTECTED_FIELDS}

        with self._session("Update case") as db:
            row = self._load_owned(db, identity, case_id, write_action="update")

            client_changes = _clean_client(data.get("client")) if "client" in data else None
            validate_case_changes({"client": client_changes})

            if data.get("status") is not None:
                status = _parse_status(data["status"])
                if status == CaseStatus.DELETED:
                    raise ValidationError("Use delete to move a case to trash", fields={"status": "Invalid status"})
                if row.is_deleted and status != row.status:
                    raise ValidationError("Restore the case before changing its status", fields={"status": "Case is deleted"})
                row.status = status

            for field in CONTENT_FIELDS:
                if field in data:
                    setattr(row, field, data[field] or "")

            for field in FLAG_FIELDS:
                if data.get(field) is not None:
                    setattr(row, field, bool(data[field]))

            if "case_date" in data:
                row.case_date = _to_store_timestamp(data["case_date"])

            if client_changes:
                # Assign a new dict so the JSON column is marked dirty
                row.client = {**(row.client or {}), **client_changes}

            row.updated_at = self._now()
            db.commit()
            db.refresh(row)
            record = _to_record(row)

        logger.info(f"[cases] Updated case: {case_id}")
        return record

    def soft_delete_case(self, identity: Optional[AuthContext], case_id: str) -> CaseRecord:
        """Move a case to trash; it stays readable by id but leaves the listing"""
        identity = self._require_identity(identity)
        with self._session("Delete case") as db:
            row = self._load_owned(db, identity, case_id, write_action="delete")
            now = self._now()
            row.is_deleted = True
            row.deleted_at = now
            row.status = CaseStatus.DELETED
            row.updated_at = now
            db.commit()
            db.refresh(row)
            record = _to_record(row)

        logger.info(f"[cases] Soft-deleted case: {case_id}")
        return record

    def restore_case(self, identity: Optional[AuthContext], case_id: str) -> CaseRecord:
        """Bring a case back from trash as Open. A case not in trash is returned unchanged."""
        identity = self._require_identity(identity)
        with self._session("Restore case") as db:
            row = self._load_owned(db, identity, case_id, write_action="restore")
            if not row.is_deleted:
                return _to_record(row)

            row.is_deleted = False
            row.deleted_at = None
            row.status = CaseStatus.OPEN
            row.updated_at = self._now()
            db.commit()
            db.refresh(row)
            record = _to_record(row)

        logger.info(f"[cases] Restored case: {case_id}")
        return record

    def permanently_delete_case(self, identity: Optional[AuthContext], case_id: str) -> str:
        """Erase a case that is already in trash. Cannot be undone."""
        identity = self._require_identity(identity)
        with self._session("Permanently delete case") as db:
            row = self._load_owned(db, identity, case_id, write_action="delete")
            if not row.is_deleted:
                raise ValidationError("Move the case to trash before deleting it permanently")
            db.delete(row)
            db.commit()

        logger.info(f"[cases] Permanently deleted case: {case_id}")
        return case_id
