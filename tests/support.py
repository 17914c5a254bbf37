"""Stub collaborators shared by the test modules."""

from __future__ import annotations

import asyncio
import base64
from typing import Dict, Iterable, List, Optional

from literal_worker.app.models import Line
from literal_worker.services.exceptions import GenerationFailure, LyricsUnavailable


def encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def make_lines(*pairs: tuple[int, str]) -> List[Line]:
    return [Line(start_time_ms=start, words=words) for start, words in pairs]


class RecordingGenerator:
    """Generator stub returning distinct fake images per call."""

    def __init__(
        self,
        *,
        images_per_call: int = 2,
        delay: float = 0.0,
        fail_on: Iterable[str] = (),
    ) -> None:
        self.images_per_call = images_per_call
        self.delay = delay
        self.fail_on = set(fail_on)
        self.calls: List[str] = []
        self.results: Dict[str, List[str]] = {}

    async def generate(self, prompt: str) -> List[str]:
        self.calls.append(prompt)
        call_number = len(self.calls)
        if self.delay:
            await asyncio.sleep(self.delay)
        if prompt in self.fail_on:
            raise GenerationFailure(f"cannot render {prompt}")
        images = [
            encode(f"{prompt}|{call_number}|{index}") for index in range(self.images_per_call)
        ]
        self.results.setdefault(prompt, []).extend(images)
        return images


class StaticLyrics:
    def __init__(self, tracks: Optional[Dict[str, List[Line]]] = None) -> None:
        self.tracks: Dict[str, List[Line]] = dict(tracks or {})
        self.requests: List[str] = []

    async def fetch(self, track_id: str) -> List[Line]:
        self.requests.append(track_id)
        lines = self.tracks.get(track_id)
        if not lines:
            raise LyricsUnavailable(track_id, "lyrics not found")
        return list(lines)


class StubToken:
    def __init__(self) -> None:
        self.active = True
        self.stopped = asyncio.Event()
        self.done = 0
        self.failures: List[BaseException] = []

    def is_active(self) -> bool:
        return self.active

    def advance(self) -> None:
        self.done += 1

    def fail(self, exc: BaseException) -> None:
        self.failures.append(exc)
        self.deactivate()

    def deactivate(self) -> None:
        self.active = False
        self.stopped.set()
