"""
Workflow Input Contracts

Typed input for each enforcement workflow. Drafts are accepted with
missing values; step completeness is checked by the workflow itself so a
partially filled form can report exactly which fields are outstanding.

The suspension/warning branch is an explicit tagged union keyed on
`reasonableness` ("no" → suspension, "yes" → warning).
"""
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# REFERENCE DATA
# =============================================================================

RISK_CATEGORIES = [
    "Direct physical risk",
    "Safeguarding concern",
    "Environmental hazard",
    "Supervision inadequacy",
    "Health/hygiene risk",
    "Compliance / EYFS Failure",
]

CANCELLATION_GROUNDS = [
    {
        "id": "mandatory_dq",
        "label": "Mandatory: Disqualification",
        "sub": "Provider is disqualified from registration (e.g. conviction, order, etc.) "
               "under Section 76 Childcare Act 2006.",
        "mandatory": True,
    },
    {
        "id": "requirements",
        "label": "Requirements Not Met",
        "sub": "Prescribed requirements for registration are not satisfied (Reg 3(a)).",
        "mandatory": False,
    },
    {
        "id": "conditions",
        "label": "Breach of Conditions",
        "sub": "Failed to comply with a condition imposed on the registration (Reg 3(b)).",
        "mandatory": False,
    },
    {
        "id": "fees",
        "label": "Non-Payment of Fees",
        "sub": "Failed to pay a prescribed fee (Reg 3(d)).",
        "mandatory": False,
    },
    {
        "id": "suitability",
        "label": "Suitability Concerns",
        "sub": "Agency no longer considers the provider suitable.",
        "mandatory": False,
    },
]

GROUND_IDS = [g["id"] for g in CANCELLATION_GROUNDS]


def ground_label(ground_id: str) -> str:
    for ground in CANCELLATION_GROUNDS:
        if ground["id"] == ground_id:
            return ground["label"]
    return ground_id


# =============================================================================
# SUSPENSION / WARNING
# =============================================================================

class SuspensionPath(BaseModel):
    """Step 2 for an immediate suspension: five legal confirmations."""
    reasonableness: Literal["no"] = "no"
    confirm_belief: bool = Field(False, description="Reasonable belief a child is or may be at risk of harm")
    confirm_immediate: bool = Field(False, description="Suspension takes immediate effect")
    confirm_appeal: bool = Field(False, description="Provider informed of the right of appeal")
    confirm_review: bool = Field(False, description="Suspension will be reviewed within 6 weeks")
    confirm_notify: bool = Field(False, description="Mandatory notifications will be sent")
    supervisor_id: Optional[str] = None


class WarningPath(BaseModel):
    """Step 2 for a warning notice (notice to improve)."""
    reasonableness: Literal["yes"] = "yes"
    warning_type: Optional[Literal["warning", "welfare"]] = "warning"
    breach_details: str = ""
    required_actions: str = ""
    compliance_deadline: int = Field(14, ge=1, description="Days allowed to comply")
    monitoring_method: Literal["visit", "documentary"] = "visit"
    impact_details: Optional[str] = None
    supervisor_id: Optional[str] = None


NoticePath = Annotated[Union[SuspensionPath, WarningPath], Field(discriminator="reasonableness")]


class RiskAssessmentInput(BaseModel):
    """Suspension or warning workflow input (risk assessment plus the chosen path)."""
    concern: str = ""
    risk_detail: str = ""
    risk_categories: List[str] = Field(default_factory=list)
    evidence_attached: bool = False
    path: Optional[NoticePath] = None

    @field_validator("risk_categories")
    @classmethod
    def validate_risk_categories(cls, v):
        unknown = [c for c in v if c not in RISK_CATEGORIES]
        if unknown:
            raise ValueError(f"Unknown risk categories: {', '.join(unknown)}")
        # Preserve order, drop duplicates
        return list(dict.fromkeys(v))

    @property
    def is_warning(self) -> bool:
        return isinstance(self.path, WarningPath)


# =============================================================================
# CANCELLATION
# =============================================================================

class CancellationInput(BaseModel):
    """Notice of intention to cancel."""
    grounds: List[str] = Field(default_factory=list)
    evidence_summary: str = ""
    has_evidence: bool = False
    rep_period: int = Field(14, ge=1, description="Representations period in days")
    confirm_reps: bool = False
    confirm_delay: bool = False
    supervisor_id: Optional[str] = None

    @field_validator("grounds")
    @classmethod
    def validate_grounds(cls, v):
        unknown = [g for g in v if g not in GROUND_IDS]
        if unknown:
            raise ValueError(f"Unknown cancellation grounds: {', '.join(unknown)}")
        return list(dict.fromkeys(v))


# =============================================================================
# SUSPENSION REVIEW
# =============================================================================

class ReviewInput(BaseModel):
    """Mandatory review of an in-effect suspension."""
    investigation_status: str = ""
    review_outcome: Optional[Literal["extend", "lift"]] = "extend"
    extension_weeks: Optional[int] = Field(6, ge=1)
    lift_conditions: Optional[str] = None
    supervisor_id: Optional[str] = None


# =============================================================================
# DECISION
# =============================================================================

class DecisionInput(BaseModel):
    """Final decision on a notice of intention to cancel."""
    reps_received: Literal["yes", "no"] = "no"
    reps_summary: Optional[str] = None
    reps_outcome: Optional[Literal["rejected", "varied", "upheld"]] = None
    supervisor_id: Optional[str] = None
    confirm_review: bool = False


# =============================================================================
# REPRESENTATIONS
# =============================================================================

class RepresentationsInput(BaseModel):
    """Provider's representations against a notice of intention."""
    summary: str = ""
