"""Shared service data structures."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Protocol


class RenderToken(Protocol):
    """Cancellation token handed to the line resolver for one job.

    ``is_active`` must be consulted after every suspension point; once it
    returns ``False`` it never becomes ``True`` again for the same job.
    """

    def is_active(self) -> bool: ...

    def advance(self) -> None: ...

    def fail(self, exc: BaseException) -> None: ...

    @property
    def stopped(self) -> asyncio.Event:
        """Set once the job can no longer use any result."""
        ...


@dataclass
class RenderState:
    """Per-job scratch state shared by the concurrently resolving lines."""

    pending: Dict[str, "asyncio.Future[List[str]]"] = field(default_factory=dict)
    new_phrases: int = 0

    def next_phrase_index(self) -> int:
        index = self.new_phrases
        self.new_phrases += 1
        return index
