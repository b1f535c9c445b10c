"""
Pydantic models for the chat-query Lambda.

Defines the request body, the three model replies (clarification decision,
query plan, insights report), the schema used for schema-mode store access,
and the response bodies.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Request
# ============================================================================


class ChatQueryRequest(BaseModel):
    """
    Request body for POST /chat-query.

    Attributes:
        message: Natural-language question from the user
    """

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={"example": {"message": "How many signups did Acme have last week?"}},
    )

    message: str = Field(..., description="Natural-language analytics question")

    @field_validator("message", mode="before")
    @classmethod
    def message_not_blank(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Message is required")
        return value.strip()


# ============================================================================
# Model replies
# ============================================================================


class ClarificationDecision(BaseModel):
    """Whether the question can be answered without asking the user first."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    needs_clarification: bool = Field(default=False, alias="needsClarification")
    questions: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

    @field_validator("questions", "suggestions", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        if value is None:
            return []
        # A single question sometimes comes back as a bare string
        if isinstance(value, str):
            return [value]
        return value


class QueryPlan(BaseModel):
    """
    Store query produced from the user's question.

    Attributes:
        query: Filter object passed to find()
        explanation: Plain-language description of the filter
        pipeline: Optional aggregation pipeline, run instead of find() when set
    """

    model_config = ConfigDict(extra="ignore")

    query: Optional[Dict[str, Any]] = None
    explanation: str = Field(..., description="Plain-language description of the query")
    pipeline: Optional[List[Dict[str, Any]]] = None


class InsightsReport(BaseModel):
    """Summary of the query results. Unknown keys are kept and returned as-is."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    key_metrics: List[Any] = Field(default_factory=list, alias="keyMetrics")
    recommendations: List[Any] = Field(default_factory=list)
    trends: List[Any] = Field(default_factory=list)

    @field_validator("key_metrics", "recommendations", "trends", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value


# ============================================================================
# Store documents
# ============================================================================


class EventDocument(BaseModel):
    """Marketing event stored in the events collection."""

    model_config = ConfigDict(extra="ignore")

    organization_name: Optional[str] = None
    event_type: Optional[str] = None
    timestamp: Optional[datetime] = None


# ============================================================================
# Responses
# ============================================================================


class ManagerSummary(BaseModel):
    """Digest of key metrics, recommendations and trends."""

    model_config = ConfigDict(populate_by_name=True)

    key_metrics: List[Any] = Field(default_factory=list, alias="keyMetrics")
    recommendations: List[Any] = Field(default_factory=list)
    trends: List[Any] = Field(default_factory=list)

    @classmethod
    def from_insights(cls, insights: InsightsReport) -> "ManagerSummary":
        return cls(
            key_metrics=insights.key_metrics,
            recommendations=insights.recommendations,
            trends=insights.trends,
        )


class ClarificationResponse(BaseModel):
    """Body returned when the user has to answer follow-up questions."""

    model_config = ConfigDict(populate_by_name=True)

    needs_clarification: bool = Field(default=True, alias="needsClarification")
    questions: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Error response schema.

    Attributes:
        error: Error message
        details: Optional additional error details
    """

    error: str = Field(..., description="Error message")
    details: Optional[str] = Field(default=None, description="Additional error details")
