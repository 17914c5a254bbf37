from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobState(str, Enum):
    WAITING = "waiting"
    IN_PROGRESS = "inProgress"
    ERROR = "error"
    CANCELLED = "cancelled"
    DONE = "done"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Line(_CamelModel):
    start_time_ms: int = Field(..., ge=0)
    words: str = Field(..., min_length=1)


class LyricImage(_CamelModel):
    image_uri: str
    start_time_ms: int
    words: str


class GenerateResponse(_CamelModel):
    generation_id: str


class JobSnapshot(_CamelModel):
    """Point-in-time view of a job as served to pollers.

    Only the fields meaningful for ``status`` are populated; serialise with
    ``exclude_none`` to get the per-status wire shape.
    """

    status: JobState
    queue_position: Optional[int] = Field(default=None, ge=2)
    done: Optional[int] = Field(default=None, ge=0)
    total: Optional[int] = Field(default=None, ge=0)
    lyrics: Optional[list[LyricImage]] = None
