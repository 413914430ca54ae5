from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

from contract_router.cancellation import CancellationToken

STAGE_INTENT = "intent"
STAGE_TOOL_ARGUMENTS = "tool_arguments"
STAGE_TOOL_EXECUTION = "tool_execution"
STAGE_IMAGE_RECOGNITION = "image_recognition"
STAGE_STRICT_ANSWER = "strict_answer"

ALERT_LOW_SCORES = "low_scores"
ALERT_SCORING_FAILED = "scoring_failed"

ERROR_TOOL = "tool_error"
ERROR_CANCELLED = "cancelled"


@dataclass
class ImageAttachment:
    data: str
    mime_type: str = "image/png"
    name: str = ""
    source: str = "upload"


@dataclass(frozen=True)
class PipelineError:
    code: str
    message: str


@dataclass(frozen=True)
class StrictAnswerResult:
    value: str
    language: str
    attempts: int
    intent: Optional[str] = None
    evaluation: Optional[Dict[str, int]] = None
    alert: Optional[str] = None
    ok: bool = True
    kind: str = "strict_answer"


@dataclass(frozen=True)
class ToolResult:
    tool: str
    args: Dict[str, Any]
    result: Any
    intent: str
    language: str
    attempts: int
    confidence: Optional[float] = None
    summary: Optional[str] = None
    evaluation: Optional[Dict[str, int]] = None
    alert: Optional[str] = None
    ok: bool = True
    kind: str = "tool"


@dataclass(frozen=True)
class ErrorResult:
    stage: str
    attempts: int
    error: Optional[PipelineError] = None
    ok: bool = False
    kind: str = "error"


PipelineResult = Union[StrictAnswerResult, ToolResult, ErrorResult]


@dataclass
class PipelineRunOptions:
    intent_model_override: Optional[str] = None
    allow_low_score_retry: bool = True
    cancellation_token: Optional[CancellationToken] = None


@dataclass(frozen=True)
class DirectToolMatch:
    tool: str
    args: Dict[str, Any]
    reason: str


@dataclass(frozen=True)
class ScoringOutcome:
    attempts: int
    evaluation: Optional[Dict[str, int]] = None
    alert: Optional[str] = None


@dataclass
class LanguageOutcome:
    ok: bool
    language: str
    attempts: int


@dataclass
class VerificationOutcome:
    decision: str
    confidence: float = 0.0
    reason: str = ""
    missing_fields: List[str] = field(default_factory=list)
    suggested_args: Optional[Dict[str, Any]] = None

    @classmethod
    def from_value(cls, value: Dict[str, Any]) -> "VerificationOutcome":
        return cls(
            decision=value["decision"],
            confidence=float(value.get("confidence") or 0.0),
            reason=value.get("reason") or "",
            missing_fields=list(value.get("missing_fields") or []),
            suggested_args=value.get("suggested_args") or None,
        )


def result_to_dict(result: PipelineResult) -> Dict[str, Any]:
    return {key: value for key, value in asdict(result).items() if value is not None}
