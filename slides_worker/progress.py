"""
Progress reporting for pipeline runs.

Every stage reports through a single ProgressSink. Producers on any thread
put events on one queue; one consumer thread forwards them to the observer,
so the observer never runs concurrently with itself.
"""

import time
import queue
import logging
import threading
from enum import Enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("slides_worker")


class Stage(str, Enum):
    TRANSCODING = "transcoding"
    DOWNLOADING = "downloading"
    TRANSCRIBING = "transcribing"
    PROCESSING = "processing"
    GATHERING_PREVIEWS = "gatheringPreviews"
    SUMMARISING = "summarising"


class State(str, Enum):
    STARTED = "started"
    PREPARING = "preparing"
    PROGRESS = "progress"
    DONE = "done"


@dataclass(frozen=True)
class Progress:
    """A stage marker or a (fraction, eta_seconds) update for one stage"""
    stage: Stage
    state: State
    fraction: Optional[float] = None
    eta: Optional[float] = None

    @classmethod
    def started(cls, stage: Stage) -> 'Progress':
        return cls(stage, State.STARTED)

    @classmethod
    def preparing(cls, stage: Stage) -> 'Progress':
        return cls(stage, State.PREPARING)

    @classmethod
    def done(cls, stage: Stage) -> 'Progress':
        return cls(stage, State.DONE)

    @classmethod
    def update(cls, stage: Stage, fraction: float, eta: float) -> 'Progress':
        return cls(stage, State.PROGRESS, min(max(fraction, 0.0), 1.0), max(eta, 0.0))

    def to_dict(self) -> Dict[str, Any]:
        """Render as the tagged {"type", "data"} form observers consume"""
        if self.stage == Stage.TRANSCODING:
            data: Any = self.state.value
        elif self.state == State.PROGRESS:
            data = {"type": self.state.value, "data": [self.fraction, self.eta]}
        else:
            data = {"type": self.state.value}
        return {"type": self.stage.value, "data": data}


def estimate_eta(start_time: float, done: float, total: float) -> float:
    """Extrapolate remaining seconds from the elapsed wall-clock rate"""
    if done <= 0:
        return 0.0
    elapsed = time.monotonic() - start_time
    return elapsed / done * max(total - done, 0.0)


class Throttle:
    """Allows one event per interval"""

    def __init__(self, interval_ms: int = 100):
        self.interval = interval_ms / 1000.0
        self._last = 0.0

    def ready(self) -> bool:
        now = time.monotonic()
        if now - self._last >= self.interval:
            self._last = now
            return True
        return False


Observer = Callable[[str, Any], None]

_STOP = object()


class ProgressSink:
    """
    One-way emitter for progress and completion events.

    The observer is called as observer("progress", Progress) or
    observer("complete", (secret, output_path)). Events are fire-and-forget.
    """

    def __init__(self, observer: Optional[Observer] = None):
        self.observer = observer
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._transcription_started: Optional[float] = None
        self._thread = threading.Thread(target=self._consume, name="progress-sink", daemon=True)
        self._thread.start()

    def emit(self, progress: Progress) -> None:
        self._queue.put(("progress", progress))

    def report_transcription_percent(self, percent: int) -> None:
        """Shared channel for the transcription collaborator's integer percent"""
        self._queue.put(("percent", max(0, min(100, int(percent)))))

    def complete(self, secret: str, output_path: str) -> None:
        self._queue.put(("complete", (secret, output_path)))

    def flush(self, timeout: float = 5.0) -> None:
        """Block until every queued event has been delivered"""
        done = threading.Event()
        self._queue.put(("flush", done))
        done.wait(timeout)

    def close(self) -> None:
        self._queue.put(_STOP)
        self._thread.join(timeout=5.0)

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return

            kind, payload = item
            if kind == "flush":
                payload.set()
                continue

            if kind == "percent":
                kind, payload = "progress", self._percent_to_progress(payload)
            elif kind == "progress" and payload.stage == Stage.TRANSCRIBING and payload.state == State.PREPARING:
                # A new transcription starts; its ETA is measured from its own first percent
                self._transcription_started = None

            if self.observer is None:
                continue

            try:
                self.observer(kind, payload)
            except Exception as e:
                logger.warning(f"Progress observer failed on {kind} event: {e}")

    def _percent_to_progress(self, percent: int) -> Progress:
        if self._transcription_started is None:
            self._transcription_started = time.monotonic()
        eta = estimate_eta(self._transcription_started, percent, 100)
        return Progress.update(Stage.TRANSCRIBING, percent / 100.0, eta)
