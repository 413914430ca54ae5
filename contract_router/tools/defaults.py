from __future__ import annotations

from typing import Optional

from contract_router.config import PipelineConfig
from contract_router.tools.filesystem import FILESYSTEM_TOOL
from contract_router.tools.http import HTTP_TOOL
from contract_router.tools.pcinfo import PCINFO_TOOL
from contract_router.tools.process import PROCESS_TOOL
from contract_router.tools.registry import ToolRegistry
from contract_router.tools.search import SEARCH_TOOL
from contract_router.tools.shell import build_shell_tool


def build_default_registry(config: Optional[PipelineConfig] = None) -> ToolRegistry:
    config = config or PipelineConfig()
    return ToolRegistry(
        [
            FILESYSTEM_TOOL,
            SEARCH_TOOL,
            HTTP_TOOL,
            PROCESS_TOOL,
            build_shell_tool(config.shell_allowed_programs),
            PCINFO_TOOL,
        ]
    )
