from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, List, Union

from .llm_base import ModelInvocation

ScriptedReply = Union[str, Exception]

DEFAULT_REPLIES: Dict[str, str] = {
    "INTENT_CLASSIFICATION": json.dumps(
        {"intent": "answer.general", "confidence": 0.5, "difficulty": "easy"}
    ),
    "LANGUAGE_DETECTION": "en",
    "TOOL_ARGUMENT_EXTRACTION": "{}",
    "TOOL_ARGUMENT_VERIFICATION": json.dumps(
        {"decision": "execute", "confidence": 0.9, "reason": "Mock verification."}
    ),
    "SCORING_EVALUATION": json.dumps({"clarity": 8, "correctness": 8, "usefulness": 8}),
    "STRICT_ANSWER": "Mock answer.",
    "CONVERSATIONAL_ANSWER": "Hi! How can I help you today?",
    "RESPONSE_FORMATTING": "Mock summary of the tool output.",
    "IMAGE_RECOGNITION": "A mock description of the attached image.",
}


@dataclass
class MockAdapter:
    """Offline adapter that replays scripted replies per contract.

    Each contract name maps to a queue of replies; an ``Exception`` entry is
    raised instead of returned. Once a queue is empty the default reply for
    that contract is used.
    """

    responses: Dict[str, List[ScriptedReply]] = field(default_factory=dict)
    defaults: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_REPLIES))
    calls: List[ModelInvocation] = field(default_factory=list)

    def script(self, contract_name: str, *replies: ScriptedReply) -> "MockAdapter":
        self.responses.setdefault(contract_name, []).extend(replies)
        return self

    def calls_for(self, contract_name: str) -> List[ModelInvocation]:
        return [call for call in self.calls if call.contract_name == contract_name]

    async def send_prompt(self, invocation: ModelInvocation) -> str:
        self.calls.append(invocation)
        queue = self.responses.get(invocation.contract_name)
        if queue:
            reply = queue.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return self.defaults.get(invocation.contract_name, "")
