"""
Case List View-State
====================

The in-memory state behind the case list and case detail screens.

- filter_cases / sort_cases / paginate: pure projections over fetched cases
- CaseViewState: the inputs (search, filters, sort, page) and derived lists
- CaseController: runs repository operations for the signed-in user and
  applies results to a CaseViewState (loading/error flags included)

Nothing here talks to the store directly or checks ownership; it only sees
records CaseRepository already authorized.
"""

import locale
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

from .auth import AuthContext, IdentityProvider
from .config import get_settings
from .errors import CaseServiceError
from .repository import CaseRepository
from .schemas import CaseRecord, CaseStatus, SortDirection, STATUS_ALL, WORKFLOW_FIELDS

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10

# Sortable fields by semantic type
DATE_FIELDS = frozenset({"created_at", "updated_at", "deleted_at", "case_date"})
BOOLEAN_FIELDS = frozenset({"is_deleted", "is_primary", "can_write", "can_export"})
STRING_FIELDS = frozenset({
    "id", "case_number", "client_name", "current_summary", "status", "user_id",
    *WORKFLOW_FIELDS,
})

SEARCH_FIELDS = ("case_number", "client_name", "current_summary")


# =============================================================================
# PROJECTIONS
# =============================================================================

@dataclass
class DateRange:
    """Inclusive case_date window; either end may be open"""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.start is not None or self.end is not None


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _epoch_ms(value: Any) -> int:
    if not value:
        return 0
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return int(_aware(value).timestamp() * 1000)


def _text(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    return "" if value is None else str(value)


def _matches_search(case: CaseRecord, term: str) -> bool:
    if not term:
        return True
    needle = term.lower()
    return any(needle in _text(getattr(case, name, "")).lower() for name in SEARCH_FIELDS)


def _matches_date_range(case: CaseRecord, date_range: Optional[DateRange]) -> bool:
    if date_range is None or not date_range.active:
        return True
    if case.case_date is None:
        return False
    when = _aware(case.case_date)
    if date_range.start is not None and when < _aware(date_range.start):
        return False
    if date_range.end is not None and when > _aware(date_range.end):
        return False
    return True


def filter_cases(cases: List[CaseRecord], search_term: str = "",
                 status: str = STATUS_ALL,
                 date_range: Optional[DateRange] = None) -> List[CaseRecord]:
    """Cases matching the search term (case-insensitive), the status filter and the date range"""
    status_value = _text(status)
    return [
        case for case in cases
        if _matches_search(case, search_term)
        and (status_value == STATUS_ALL or _text(case.status) == status_value)
        and _matches_date_range(case, date_range)
    ]


def sort_key(sort_field: str) -> Optional[Callable[[CaseRecord], Any]]:
    """
    Key function for a field, chosen by the field's declared type.

    Dates compare by epoch ms (missing = 0), strings case-insensitively in
    locale order, booleans False before True. None for unsortable fields.
    """
    if sort_field in DATE_FIELDS:
        return lambda case: _epoch_ms(getattr(case, sort_field, None))
    if sort_field in STRING_FIELDS:
        return lambda case: locale.strxfrm(_text(getattr(case, sort_field, "")).lower())
    if sort_field in BOOLEAN_FIELDS:
        return lambda case: bool(getattr(case, sort_field, False))
    return None


def sort_cases(cases: List[CaseRecord], sort_field: str,
               direction: SortDirection = SortDirection.ASC) -> List[CaseRecord]:
    """Stable sort; unknown fields keep the input order"""
    key = sort_key(sort_field)
    if key is None:
        return list(cases)
    return sorted(cases, key=key, reverse=SortDirection(direction) == SortDirection.DESC)


def paginate(cases: List[CaseRecord], page: int, page_size: int = DEFAULT_PAGE_SIZE) -> List[CaseRecord]:
    start = max(page, 0) * page_size
    return cases[start:start + page_size]


# =============================================================================
# STATE
# =============================================================================

@dataclass
class CaseViewState:
    """Fetched cases plus the list controls. Derived lists are never stored."""
    cases: List[CaseRecord] = field(default_factory=list)
    current_case: Optional[CaseRecord] = None
    loading: bool = False
    error: Optional[str] = None

    search_term: str = ""
    status_filter: str = STATUS_ALL
    date_range: DateRange = field(default_factory=DateRange)
    sort_field: str = "updated_at"
    sort_direction: SortDirection = SortDirection.DESC
    page: int = 0
    page_size: int = field(default_factory=lambda: get_settings().default_page_size)

    # -- controls -------------------------------------------------------------

    def set_search_term(self, term: str) -> None:
        self.search_term = term or ""
        self.page = 0

    def set_status_filter(self, status: Any) -> None:
        value = _text(status) or STATUS_ALL
        if value != STATUS_ALL:
            value = CaseStatus(value).value
        self.status_filter = value
        self.page = 0

    def set_date_range_filter(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> None:
        self.date_range = DateRange(start=start, end=end)
        self.page = 0

    def clear_filters(self) -> None:
        self.search_term = ""
        self.status_filter = STATUS_ALL
        self.date_range = DateRange()
        self.page = 0

    def set_sorting(self, sort_field: str, direction: Any = SortDirection.ASC) -> None:
        self.sort_field = sort_field
        self.sort_direction = SortDirection(direction)

    def toggle_sorting(self, sort_field: str) -> None:
        """Ascending on a new field; flip direction when re-selecting the ascending field"""
        if self.sort_field == sort_field and self.sort_direction == SortDirection.ASC:
            self.set_sorting(sort_field, SortDirection.DESC)
        else:
            self.set_sorting(sort_field, SortDirection.ASC)

    def set_page(self, page: int) -> None:
        self.page = max(page, 0)

    def set_page_size(self, page_size: int) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.page = 0

    def clear_current_case(self) -> None:
        self.current_case = None

    # -- projections ----------------------------------------------------------

    def filtered_cases(self) -> List[CaseRecord]:
        """Filtered and sorted, all pages"""
        matched = filter_cases(self.cases, self.search_term, self.status_filter, self.date_range)
        return sort_cases(matched, self.sort_field, self.sort_direction)

    def visible_cases(self) -> List[CaseRecord]:
        """The current page"""
        return paginate(self.filtered_cases(), self.page, self.page_size)

    def page_count(self) -> int:
        return math.ceil(len(self.filtered_cases()) / self.page_size)

    # -- list maintenance -----------------------------------------------------

    def index_of(self, case_id: str) -> int:
        for i, case in enumerate(self.cases):
            if case.id == case_id:
                return i
        return -1

    def replace_case(self, record: CaseRecord, prepend_missing: bool = False) -> None:
        index = self.index_of(record.id)
        if index != -1:
            self.cases[index] = record
        elif prepend_missing:
            self.cases.insert(0, record)

        if self.current_case is not None and self.current_case.id == record.id:
            self.current_case = record

    def remove_case(self, case_id: str) -> None:
        self.cases = [c for c in self.cases if c.id != case_id]
        if self.current_case is not None and self.current_case.id == case_id:
            self.current_case = None


# =============================================================================
# CONTROLLER
# =============================================================================

class CaseController:
    """
    Drives a CaseViewState from repository calls for the signed-in user.

    Each operation clears the error and sets loading while it runs. A failure
    leaves its message in state.error and returns None; it is not retried.
    Signing out empties the state.
    """

    def __init__(self, repository: CaseRepository, identity_provider: IdentityProvider,
                 state: Optional[CaseViewState] = None):
        self.repository = repository
        self.state = state or CaseViewState()
        self._identity: Optional[AuthContext] = None
        self._unsubscribe = identity_provider.subscribe(self._on_identity_changed)

    @property
    def identity(self) -> Optional[AuthContext]:
        return self._identity

    def _on_identity_changed(self, identity: Optional[AuthContext]) -> None:
        previous = self._identity
        self._identity = identity
        if identity is None or (previous is not None and previous.user_id != identity.user_id):
            self.state.cases = []
            self.state.current_case = None
            self.state.error = None

    def close(self) -> None:
        """Stop listening for identity changes"""
        self._unsubscribe()

    def _run(self, operation: Callable[[Optional[AuthContext]], Any]) -> Any:
        self.state.loading = True
        self.state.error = None
        try:
            return operation(self._identity)
        except CaseServiceError as e:
            logger.warning(f"Case operation failed: {e.message}")
            self.state.error = e.message
            return None
        finally:
            self.state.loading = False

    def fetch_cases(self) -> Optional[List[CaseRecord]]:
        cases = self._run(self.repository.list_cases)
        if cases is not None:
            self.state.cases = cases
        return cases

    def fetch_case(self, case_id: str) -> Optional[CaseRecord]:
        record = self._run(lambda who: self.repository.get_case(who, case_id))
        if record is not None:
            self.state.current_case = record
        return record

    def create_case(self, fields: Any) -> Optional[CaseRecord]:
        record = self._run(lambda who: self.repository.create_case(who, fields))
        if record is not None:
            self.state.cases.insert(0, record)
            self.state.current_case = record
        return record

    def update_case(self, case_id: str, fields: Any) -> Optional[CaseRecord]:
        record = self._run(lambda who: self.repository.update_case(who, case_id, fields))
        if record is not None:
            self.state.replace_case(record)
        return record

    def soft_delete_case(self, case_id: str) -> Optional[CaseRecord]:
        record = self._run(lambda who: self.repository.soft_delete_case(who, case_id))
        if record is not None:
            # Stays listed (as Deleted) until the next fetch so it can be restored in place
            index = self.state.index_of(case_id)
            if index != -1:
                self.state.cases[index] = record
            if self.state.current_case is not None and self.state.current_case.id == case_id:
                self.state.current_case = None
        return record

    def restore_case(self, case_id: str) -> Optional[CaseRecord]:
        record = self._run(lambda who: self.repository.restore_case(who, case_id))
        if record is not None:
            self.state.replace_case(record, prepend_missing=True)
        return record

    def permanently_delete_case(self, case_id: str) -> Optional[str]:
        deleted_id = self._run(lambda who: self.repository.permanently_delete_case(who, case_id))
        if deleted_id is not None:
            self.state.remove_case(deleted_id)
        return deleted_id

    def export_case(self, case_id: str) -> Optional[dict]:
        return self._run(lambda who: self.repository.export_case(who, case_id))
