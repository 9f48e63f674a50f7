"""Pydantic models for request/response validation."""
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Two or three letter country code, stored upper-cased
COUNTRY_CODE = re.compile(r"^[A-Z]{2,3}$")


class VoteSubmission(BaseModel):
    """
    Vote submission request model.

    Consent flags and free-form ballot fields are accepted as extra keys.
    """

    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "email": "alice@example.org",
                "id": "https://voters.example.org/3f2b8c0e9a6d4f1b8e2a7c5d9b0e1f23",
                "nationality": "FR",
                "name": "Alice",
                "description": "I vote for a better future",
                "I accept privacy policy and terms of service": "on",
                "I am over 18 years old": "on"
            }
        }
    )

    email: str = Field(..., description="Identity the vote is submitted for")
    id: str = Field(..., description="Registration token echoed back by the client")
    nationality: str = Field(..., description="Two or three letter country code")

    @field_validator("nationality")
    @classmethod
    def validate_nationality(cls, v):
        """Normalize the country code to upper case."""
        code = v.strip().upper()
        if not COUNTRY_CODE.match(code):
            raise ValueError(f"Nationality must be a 2 or 3 letter country code, got {v!r}")
        return code

    def to_payload(self) -> Dict[str, Any]:
        """All submitted fields, declared and extra."""
        return self.model_dump()


class VoteRecordResponse(BaseModel):
    """Stored vote record as returned to its owner."""

    id: str
    identity: str
    nationality: Optional[str] = None
    answers: Dict[str, Any] = Field(default_factory=dict)
    created: Optional[str] = None
    index: Optional[int] = None


class CountryResponse(BaseModel):
    """Country aggregate response model."""

    code: str = Field(..., description="Country code")
    total_count: int = Field(..., description="Finalized votes for this country")
    recent_votes: List[Dict[str, Any]] = Field(..., description="Most recent public votes, newest first")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "FR",
                "total_count": 2,
                "recent_votes": [
                    {"index": 2, "nationality": "FR", "created": "2024-01-15T10:31:00+00:00", "name": "Bob"},
                    {"index": 1, "nationality": "FR", "created": "2024-01-15T10:30:00+00:00", "name": "Alice"}
                ]
            }
        }
    )


class StatsResponse(BaseModel):
    """Global stats response model."""

    total_count: int = Field(..., description="Finalized votes across all countries")
    countries: List[CountryResponse] = Field(..., description="Countries ranked by total_count")


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Health check timestamp")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "services": {
                    "rabbitmq": "connected",
                    "postgresql": "connected",
                    "redis": "connected"
                },
                "timestamp": "2024-01-15T10:30:00"
            }
        }
    )


class ErrorResponse(BaseModel):
    """Error response model."""

    detail: str = Field(..., description="Error message")
