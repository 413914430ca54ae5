from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from contract_router.pipeline.types import PipelineResult

logger = logging.getLogger(__name__)

FallbackProducer = Callable[[], Awaitable[Optional[PipelineResult]]]


class FallbackChain:
    """Ordered producers; the first one returning a result wins.

    A producer returns None to mean "try the next one". Exceptions are not
    caught here, so cancellation short-circuits the chain.
    """

    def __init__(self) -> None:
        self._producers: List[Tuple[str, FallbackProducer]] = []

    def add(self, name: str, producer: FallbackProducer) -> "FallbackChain":
        self._producers.append((name, producer))
        return self

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self._producers]

    async def run(self) -> Optional[PipelineResult]:
        for name, producer in self._producers:
            result = await producer()
            if result is not None:
                return result
            logger.info("[pipeline] fallback %s produced no result, trying next", name)
        return None
