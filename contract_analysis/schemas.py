"""
Pydantic Schemas for Contract Analysis Service
==============================================

Wire shapes for the API and the validated analysis payload.

JSON keys are camelCase (`keyDates`, `riskLevel`, `storageKey`) to match
the shape the completion is asked to produce and what existing clients read.
Python attributes stay snake_case.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from enum import Enum
from datetime import datetime

from .db.models import ContractStatus


class RiskLevel(str, Enum):
    """Overall contract risk level"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskSeverity(str, Enum):
    """Severity of a single risk finding"""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# =============================================================================
# ANALYSIS RESULT
# =============================================================================

class Party(CamelModel):
    name: str
    role: str


class KeyDate(CamelModel):
    date: str  # YYYY-MM-DD
    event: str


class Risk(CamelModel):
    level: RiskSeverity
    description: str


class Insight(CamelModel):
    type: str
    title: str
    content: str


class AnalysisResult(CamelModel):
    """
    Validated AI analysis attached to an active contract.

    Built only by validator.validate_ai_response; never from raw model output.
    """
    summary: Optional[str] = None
    parties: List[Party] = Field(default_factory=list)
    key_dates: List[KeyDate] = Field(default_factory=list)
    risks: List[Risk] = Field(default_factory=list)
    insights: List[Insight] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    title: Optional[str] = None
    counterparty: Optional[str] = None
    contract_type: Optional[str] = None
    value: Optional[str] = None
    effective_date: Optional[str] = None
    expiry_date: Optional[str] = None

    def to_storage(self) -> Dict[str, Any]:
        """JSON-ready dict for the contracts.analysis_results column"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# API RESPONSES
# =============================================================================

class ContractResponse(CamelModel):
    """Contract record as returned by the API"""
    id: str
    name: str
    status: ContractStatus
    storage_key: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    organization_id: str
    uploaded_by_user_id: Optional[str] = None
    analysis_results: Optional[Dict[str, Any]] = None
    analysis_error: Optional[str] = None
    title: Optional[str] = None
    counterparty: Optional[str] = None
    contract_type: Optional[str] = None
    risk_level: Optional[str] = None
    value: Optional[str] = None
    effective_date: Optional[str] = None
    expiry_date: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DownloadUrlResponse(CamelModel):
    url: str
    expires_in: int


class ErrorResponse(BaseModel):
    """Error payload for every failed request"""
    message: str
