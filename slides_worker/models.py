"""
Domain models for the slides worker.

Defines the core data structures used throughout the system,
providing type safety and clear interfaces between components.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Tuple


TICKS_PER_SECOND = 100

# (text, start_tick, end_tick) as produced by the transcription collaborator
TickedSegment = Tuple[str, int, int]


class PipelineError(Exception):
    """Fatal pipeline failure carrying a human-readable context message"""


class DecodeError(PipelineError):
    """Video decode failure other than the expected end of stream"""


def seconds_to_ticks(seconds: float) -> int:
    return int(round(seconds * TICKS_PER_SECOND))


def ticks_to_seconds(ticks: int) -> float:
    return ticks / TICKS_PER_SECOND


@dataclass(frozen=True)
class VideoAsset:
    """Source video reference plus its content hash"""
    path: str
    content_hash: str


@dataclass
class Segment:
    """A transcript unit (utterance or word) in fractional seconds"""
    text: str
    start: float
    end: float

    def to_dict(self) -> Dict[str, Any]:
        return {'text': self.text, 'start': self.start, 'end': self.end}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Segment':
        return cls(text=str(data['text']), start=float(data['start']), end=float(data['end']))

    @classmethod
    def from_ticks(cls, ticked: TickedSegment) -> 'Segment':
        text, start, end = ticked
        return cls(text=text, start=ticks_to_seconds(start), end=ticks_to_seconds(end))

    def to_ticks(self) -> TickedSegment:
        return (self.text, seconds_to_ticks(self.start), seconds_to_ticks(self.end))


@dataclass
class Region:
    """A scene interval with its transcript excerpt and summary"""
    start: float
    end: float
    segments: List[Segment]
    words: Optional[List[Segment]] = None
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'segments': [s.to_dict() for s in self.segments],
            'words': [w.to_dict() for w in self.words] if self.words is not None else None,
            'start': self.start,
            'end': self.end,
            'summary': self.summary
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Region':
        words = data.get('words')
        return cls(
            start=float(data['start']),
            end=float(data['end']),
            segments=[Segment.from_dict(s) for s in data.get('segments', [])],
            words=[Segment.from_dict(w) for w in words] if words is not None else None,
            summary=data.get('summary', '')
        )


@dataclass
class Transcript:
    """Output of the transcription branch; words is None in sidecar reuse mode"""
    utterances: List[TickedSegment]
    words: Optional[List[TickedSegment]] = None


@dataclass
class ProcessingResult:
    """Represents the result of a pipeline run"""
    success: bool
    stages_completed: List[str]
    error: Optional[str] = None
    cache_hit: bool = False
    secret: Optional[str] = None
    output_path: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    processing_time_sec: Optional[float] = None
