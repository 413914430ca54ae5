from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol


@dataclass
class ModelInvocation:
    model: str
    mode: str = "chat"
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    raw_prompt: Optional[str] = None
    expects_json: bool = False
    images: List[str] = field(default_factory=list)
    contract_name: str = ""

    def flattened_prompt(self) -> str:
        if self.raw_prompt:
            return self.raw_prompt
        return "\n\n".join(part for part in (self.system_prompt, self.user_prompt) if part)


class LLMAdapter(Protocol):
    async def send_prompt(self, invocation: ModelInvocation) -> str:
        raise NotImplementedError
