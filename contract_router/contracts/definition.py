from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

INTENT_CLASSIFICATION = "INTENT_CLASSIFICATION"
LANGUAGE_DETECTION = "LANGUAGE_DETECTION"
TOOL_ARGUMENT_EXTRACTION = "TOOL_ARGUMENT_EXTRACTION"
TOOL_ARGUMENT_VERIFICATION = "TOOL_ARGUMENT_VERIFICATION"
SCORING_EVALUATION = "SCORING_EVALUATION"
STRICT_ANSWER = "STRICT_ANSWER"
CONVERSATIONAL_ANSWER = "CONVERSATIONAL_ANSWER"
RESPONSE_FORMATTING = "RESPONSE_FORMATTING"
IMAGE_RECOGNITION = "IMAGE_RECOGNITION"

CONTRACT_NAMES = (
    INTENT_CLASSIFICATION,
    LANGUAGE_DETECTION,
    TOOL_ARGUMENT_EXTRACTION,
    TOOL_ARGUMENT_VERIFICATION,
    SCORING_EVALUATION,
    STRICT_ANSWER,
    CONVERSATIONAL_ANSWER,
    RESPONSE_FORMATTING,
    IMAGE_RECOGNITION,
)

CONTRACT_MODES = ("chat", "raw")


@dataclass(frozen=True)
class Contract:
    name: str
    model: str
    mode: str = "chat"
    system_prompt: str = ""
    user_prompt: str = ""
    prompt: str = ""
    retries: Dict[int, str] = field(default_factory=dict)
    expects_json: bool = False
    criteria: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ContractPrompt:
    contract_name: str
    model: str
    mode: str = "chat"
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    raw_prompt: Optional[str] = None
    retries: Dict[int, str] = field(default_factory=dict)
    expects_json: bool = False
    images: List[str] = field(default_factory=list)

    def with_model(self, model: str) -> "ContractPrompt":
        return replace(self, model=model)

    def with_images(self, images: List[str]) -> "ContractPrompt":
        return replace(self, images=list(images))
