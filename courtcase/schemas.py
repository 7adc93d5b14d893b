"""
Pydantic Schemas for Courtcase Service
======================================

The case record shape shared by the repository, the view-state and the API,
plus request/response bodies.

Workflow fields follow the litigation phases shown as tabs on the case page.
The "Documents & Evidence" tab has no fields of its own yet.
"""

from typing import List, Optional, Dict
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from enum import Enum
from datetime import datetime


# =============================================================================
# ENUMS
# =============================================================================

class CaseStatus(str, Enum):
    """Case lifecycle status"""
    OPEN = "Open"
    CLOSED = "Closed"
    PENDING = "Pending"
    DELETED = "Deleted"


# Status filter value that matches every case
STATUS_ALL = "All"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


# =============================================================================
# WORKFLOW FIELDS
# =============================================================================

WORKFLOW_PHASES: Dict[str, List[str]] = {
    "initial_consultation": [
        "charges_explanation",
        "potential_outcomes",
        "timeline_estimate",
        "defense_strategy_steps",
    ],
    "case_evaluation": [
        "evidence_review",
        "case_strengths",
        "case_weaknesses",
        "expert_consultation",
    ],
    "legal_research": [
        "relevant_laws",
        "case_precedents",
        "legal_strategy",
    ],
    "pre_trial": [
        "motion_filings",
        "discovery_process",
        "witness_preparation",
    ],
    "negotiation": [
        "negotiation_strategy",
        "prosecution_communication",
        "client_consultation",
    ],
    "trial_preparation": [
        "defense_strategy",
        "mock_trial_notes",
        "exhibit_preparation",
    ],
    "during_trial": [
        "opening_statement",
        "cross_examination",
        "defense_presentation",
        "closing_argument",
    ],
    "post_trial": [
        "verdict_and_sentencing",
        "appeals_planning",
        "post_trial_motions",
    ],
}

WORKFLOW_FIELDS: List[str] = [f for fields in WORKFLOW_PHASES.values() for f in fields]


# =============================================================================
# CASE RECORD
# =============================================================================

class ClientInfo(BaseModel):
    """Client details embedded in a case"""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    statement: str = ""
    objectives: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class CaseRecord(BaseModel):
    """Normalized case as returned by every repository read path"""
    id: str
    case_number: str = ""
    client_name: str = ""
    current_summary: str = ""
    case_date: Optional[datetime] = None
    status: CaseStatus = CaseStatus.OPEN
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    user_id: str = ""
    is_primary: bool = True
    can_write: bool = True
    can_export: bool = True

    client: ClientInfo = Field(default_factory=ClientInfo)

    # Initial Consultation
    charges_explanation: str = ""
    potential_outcomes: str = ""
    timeline_estimate: str = ""
    defense_strategy_steps: str = ""

    # Case Evaluation
    evidence_review: str = ""
    case_strengths: str = ""
    case_weaknesses: str = ""
    expert_consultation: str = ""

    # Legal Research
    relevant_laws: str = ""
    case_precedents: str = ""
    legal_strategy: str = ""

    # Pre-Trial Preparation
    motion_filings: str = ""
    discovery_process: str = ""
    witness_preparation: str = ""

    # Negotiation
    negotiation_strategy: str = ""
    prosecution_communication: str = ""
    client_consultation: str = ""

    # Trial Preparation
    defense_strategy: str = ""
    mock_trial_notes: str = ""
    exhibit_preparation: str = ""

    # During Trial
    opening_statement: str = ""
    cross_examination: str = ""
    defense_presentation: str = ""
    closing_argument: str = ""

    # Post-Trial
    verdict_and_sentencing: str = ""
    appeals_planning: str = ""
    post_trial_motions: str = ""


# =============================================================================
# CASE REQUESTS
# =============================================================================

class ClientInfoUpdate(BaseModel):
    """Partial client details (only supplied keys are merged)"""
    model_config = ConfigDict(extra="ignore")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    statement: Optional[str] = None
    objectives: Optional[str] = None


class CreateCaseRequest(BaseModel):
    """Request to create a new case"""
    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "client_name": "John Smith",
                "current_summary": "Charged with burglary, arraignment next week",
                "client": {
                    "first_name": "John",
                    "last_name": "Smith",
                    "email": "john.smith@example.com",
                    "phone": "+1 555 010 2030",
                },
            }
        },
    )

    case_number: Optional[str] = Field(None, description="Generated when omitted")
    client_name: str = ""
    current_summary: str = ""
    case_date: Optional[datetime] = None
    status: Optional[CaseStatus] = None
    client: ClientInfoUpdate = Field(default_factory=ClientInfoUpdate)

    charges_explanation: str = ""
    potential_outcomes: str = ""
    timeline_estimate: str = ""
    defense_strategy_steps: str = ""
    evidence_review: str = ""
    case_strengths: str = ""
    case_weaknesses: str = ""
    expert_consultation: str = ""
    relevant_laws: str = ""
    case_precedents: str = ""
    legal_strategy: str = ""
    motion_filings: str = ""
    discovery_process: str = ""
    witness_preparation: str = ""
    negotiation_strategy: str = ""
    prosecution_communication: str = ""
    client_consultation: str = ""
    defense_strategy: str = ""
    mock_trial_notes: str = ""
    exhibit_preparation: str = ""
    opening_statement: str = ""
    cross_examination: str = ""
    defense_presentation: str = ""
    closing_argument: str = ""
    verdict_and_sentencing: str = ""
    appeals_planning: str = ""
    post_trial_motions: str = ""


class UpdateCaseRequest(BaseModel):
    """Partial case update; unset fields are left untouched"""
    model_config = ConfigDict(extra="ignore")

    case_number: Optional[str] = None
    client_name: Optional[str] = None
    current_summary: Optional[str] = None
    case_date: Optional[datetime] = None
    status: Optional[CaseStatus] = None
    is_primary: Optional[bool] = None
    can_write: Optional[bool] = None
    can_export: Optional[bool] = None
    client: Optional[ClientInfoUpdate] = None

    charges_explanation: Optional[str] = None
    potential_outcomes: Optional[str] = None
    timeline_estimate: Optional[str] = None
    defense_strategy_steps: Optional[str] = None
    evidence_review: Optional[str] = None
    case_strengths: Optional[str] = None
    case_weaknesses: Optional[str] = None
    expert_consultation: Optional[str] = None
    relevant_laws: Optional[str] = None
    case_precedents: Optional[str] = None
    legal_strategy: Optional[str] = None
    motion_filings: Optional[str] = None
    discovery_process: Optional[str] = None
    witness_preparation: Optional[str] = None
    negotiation_strategy: Optional[str] = None
    prosecution_communication: Optional[str] = None
    client_consultation: Optional[str] = None
    defense_strategy: Optional[str] = None
    mock_trial_notes: Optional[str] = None
    exhibit_preparation: Optional[str] = None
    opening_statement: Optional[str] = None
    cross_examination: Optional[str] = None
    defense_presentation: Optional[str] = None
    closing_argument: Optional[str] = None
    verdict_and_sentencing: Optional[str] = None
    appeals_planning: Optional[str] = None
    post_trial_motions: Optional[str] = None


# =============================================================================
# AUTH
# =============================================================================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    confirm_password: Optional[str] = None
    name: Optional[str] = None


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"


class MeResponse(BaseModel):
    user_id: str
    email: str
    name: str


# =============================================================================
# SYSTEM
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str = "ok"
    version: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Error body returned for every case service failure"""
    error: str
    detail: str
    reason: Optional[str] = None
    fields: Optional[Dict[str, str]] = None
