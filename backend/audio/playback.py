"""
Playback pipeline for inbound voice audio.

Invariants:
- PCM16 signed, little-endian, mono, 24 kHz
- Segments are scheduled back-to-back in arrival order: segment i starts
  no earlier than the scheduled end of segment i-1, or "now" when idle
- A malformed segment is logged and skipped; the session continues
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Protocol

import numpy as np

from audio.pcm import decode_pcm16_segment
from observability.logger import log_event, now_ms
from session.errors import DecodeFailure
from spec import PLAYBACK_SAMPLE_RATE_HZ, samples_to_seconds


class AudioSink(Protocol):
    """Output device contract: open, queue segments in order, close."""

    def open(self) -> None: ...
    def enqueue(self, samples: np.ndarray, start_at_s: float) -> None: ...
    def close(self) -> None: ...


class PlaybackScheduler:
    """
    Cumulative end-time tracker.

    Pure: the caller supplies "now", so tests drive it with a fake clock.
    """

    def __init__(self) -> None:
        self._scheduled_end_s: float | None = None

    @property
    def scheduled_end_s(self) -> float | None:
        return self._scheduled_end_s

    def schedule(self, duration_s: float, now_s: float) -> float:
        """
        Reserve [start, start + duration_s) and return start.

        start = max(now_s, previous scheduled end).
        """
        if duration_s < 0:
            raise ValueError("duration_s must be >= 0")

        start_s = now_s
        if self._scheduled_end_s is not None and self._scheduled_end_s > now_s:
            start_s = self._scheduled_end_s

        self._scheduled_end_s = start_s + duration_s
        return start_s

    def reset(self) -> None:
        self._scheduled_end_s = None


@dataclass
class PlaybackCounters:
    """Counters for observability."""
    segments_scheduled: int = 0
    segments_skipped: int = 0
    segments_after_close: int = 0
    seconds_scheduled: float = 0.0


class PlaybackPipeline:
    """
    Transport -> codec -> scheduler -> output device.

    Never gated by mute and never blocks the transport's receive path.
    """

    def __init__(
        self,
        *,
        sink: AudioSink,
        clock: Callable[[], float] = time.monotonic,
        sample_rate_hz: int = PLAYBACK_SAMPLE_RATE_HZ,
        session_id: str | None = None,
    ) -> None:
        self._sink = sink
        self._clock = clock
        self._sample_rate_hz = sample_rate_hz
        self._session_id = session_id
        self._scheduler = PlaybackScheduler()
        self._opened = False
        self._closed = False
        self.counters = PlaybackCounters()

    def open(self) -> None:
        """
        Acquire the output device.

        Raises:
            DeviceUnavailable if no output device is usable.
        """
        if self._closed or self._opened:
            return
        self._sink.open()
        self._opened = True

    def play(self, pcm_bytes: bytes) -> float | None:
        """
        Decode and schedule one inbound segment.

        Returns:
            The scheduled start time (clock seconds), or None if the
            segment was skipped or the pipeline is closed.
        """
        if self._closed:
            self.counters.segments_after_close += 1
            return None

        try:
            samples = decode_pcm16_segment(pcm_bytes)
        except DecodeFailure as e:
            self.counters.segments_skipped += 1
            log_event({
                "ts_ms": now_ms(),
                "event_type": "PLAYBACK_SEGMENT_SKIPPED",
                "session_id": self._session_id,
                "category": e.category.value,
                "error": str(e),
                "payload_len": len(pcm_bytes),
            })
            return None

        duration_s = samples_to_seconds(len(samples), self._sample_rate_hz)
        start_s = self._scheduler.schedule(duration_s, self._clock())
        self._sink.enqueue(samples, start_s)

        self.counters.segments_scheduled += 1
        self.counters.seconds_scheduled += duration_s
        return start_s

    def close(self) -> None:
        """Stop scheduling, drop unplayed audio, release the device. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._scheduler.reset()
        if self._opened:
            self._sink.close()
            log_event({
                "ts_ms": now_ms(),
                "event_type": "OUTPUT_RELEASED",
                "session_id": self._session_id,
            })

    @property
    def scheduled_end_s(self) -> float | None:
        return self._scheduler.scheduled_end_s

    def snapshot(self) -> dict[str, int | float]:
        """Lightweight snapshot for logging."""
        return {
            "segments_scheduled": self.counters.segments_scheduled,
            "segments_skipped": self.counters.segments_skipped,
            "segments_after_close": self.counters.segments_after_close,
            "seconds_scheduled": round(self.counters.seconds_scheduled, 3),
        }
