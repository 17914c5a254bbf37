"""Shared service-layer exceptions."""

from __future__ import annotations


class GenerationFailure(Exception):
    """Expected failure while generating images for a phrase."""


class LyricsUnavailable(Exception):
    """Raised when a track has no usable synced lyrics."""

    def __init__(self, track_id: str, reason: str) -> None:
        super().__init__(f"{track_id}: {reason}")
        self.track_id = track_id
        self.reason = reason


class JobAborted(Exception):
    """A job stopped being active while one of its phrases was pending."""
