from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr


REQUIRED_ANALYSIS_FIELDS = (
    "severity",
    "summary",
    "possibleCauses",
    "remedies",
    "medicalAdvice",
    "disclaimer",
    "emergencyContact",
)


class Severity(str, Enum):
    MILD = "MILD"
    MODERATE = "MODERATE"
    SEVERE = "SEVERE"
    UNKNOWN = "UNKNOWN"


class AnalysisResult(BaseModel):
    """Validated reasoner output. Field aliases are the external wire names."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    severity: Severity
    summary: StrictStr
    possible_causes: list[StrictStr] = Field(alias="possibleCauses")
    remedies: list[StrictStr]
    medical_advice: StrictStr = Field(alias="medicalAdvice")
    disclaimer: StrictStr
    emergency_contact: StrictBool = Field(alias="emergencyContact")

    def as_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# Schema handed to the reasoning service; mirrors AnalysisResult.
ANALYSIS_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "severity": {"type": "string", "enum": [level.value for level in Severity]},
        "summary": {"type": "string", "description": "A concise summary of the reported symptoms."},
        "possibleCauses": {
            "type": "array",
            "items": {"type": "string"},
            "description": "List of 3-5 potential common causes.",
        },
        "remedies": {
            "type": "array",
            "items": {"type": "string"},
            "description": "List of home remedies or OTC suggestions.",
        },
        "medicalAdvice": {"type": "string", "description": "Specific advice on when to see a doctor."},
        "disclaimer": {"type": "string", "description": "Standard medical disclaimer string."},
        "emergencyContact": {
            "type": "boolean",
            "description": "True if immediate doctor/ER connection is recommended.",
        },
    },
    "required": list(REQUIRED_ANALYSIS_FIELDS),
}


@dataclass(frozen=True)
class UserContext:
    full_name: str
    age: int | None = None
    gender: str = ""
    medical_history: str = ""
    preferred_language: str = "en"


@dataclass(frozen=True)
class ChatMessage:
    id: str
    role: Literal["user", "assistant"]
    created_at: str
    text: str | None = None
    image_data: str | None = None
    analysis: AnalysisResult | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "image_data": self.image_data,
            "analysis": self.analysis.as_wire() if self.analysis else None,
            "created_at": self.created_at,
        }


@dataclass
class SubmissionOutcome:
    status: Literal["analyzed", "failed", "busy", "empty", "superseded"]
    messages: list[ChatMessage] = field(default_factory=list)
    analysis: AnalysisResult | None = None
    speech_started: bool = False

    def as_envelope(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "messages": [message.as_dict() for message in self.messages],
            "analysis": self.analysis.as_wire() if self.analysis else None,
            "speech_started": self.speech_started,
        }
