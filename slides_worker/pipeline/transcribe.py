import os
import json
import logging
import tempfile
import threading
import importlib
from contextlib import contextmanager
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Tuple

import tqdm

from ..models import PipelineError, Segment, TickedSegment, Transcript, seconds_to_ticks
from ..progress import Progress, ProgressSink, Stage
from .model_store import ensure_model
from .normalize import transcode_to_wav
from .util import sidecar_transcript_path

logger = logging.getLogger("slides_worker")


ProgressCallback = Callable[[int], None]


class Transcriber(Protocol):
    def transcribe(
        self, model_path: str, wav_path: str, progress_callback: ProgressCallback
    ) -> Tuple[List[TickedSegment], List[TickedSegment]]:
        ...


_whisper_progress_lock = threading.Lock()


def percent_progress_bar(progress_callback: ProgressCallback) -> type:
    """tqdm subclass that forwards each new whole-number percent of its total"""

    class PercentProgressBar(tqdm.tqdm):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self._seen = 0
            self._last_percent = -1

        def update(self, n=1):
            super().update(n)
            self._seen += n
            if self.total:
                percent = min(100, int(self._seen * 100 / self.total))
                if percent != self._last_percent:
                    self._last_percent = percent
                    progress_callback(percent)

    return PercentProgressBar


@contextmanager
def forward_whisper_progress(progress_callback: ProgressCallback) -> Iterator[None]:
    """
    Route whisper's decode progress to progress_callback inside the block.

    whisper.transcribe has no progress parameter; it only drives a bar built
    through its module-level ``tqdm`` name. Inside the block that name
    resolves to a namespace holding percent_progress_bar(progress_callback),
    and the original is restored on exit. The swap is process-wide, so blocks
    are serialised on a lock and nothing else in the process may call
    whisper.transcribe while one is open.
    """
    transcribe_module = importlib.import_module("whisper.transcribe")

    with _whisper_progress_lock:
        original_tqdm = transcribe_module.tqdm
        transcribe_module.tqdm = SimpleNamespace(tqdm=percent_progress_bar(progress_callback))
        try:
            yield
        finally:
            transcribe_module.tqdm = original_tqdm


def ticked_segments(result: Dict[str, Any]) -> Tuple[List[TickedSegment], List[TickedSegment]]:
    """
    Utterance and word triples in ticks from a whisper result.

    Word tokens starting with "[_" are timestamp/special tokens and are dropped.
    """
    utterances: List[TickedSegment] = []
    words: List[TickedSegment] = []

    for segment in result.get("segments", []):
        utterances.append((
            segment["text"],
            seconds_to_ticks(segment["start"]),
            seconds_to_ticks(segment["end"])
        ))

        for word in segment.get("words", []):
            if word["word"].startswith("[_"):
                continue
            words.append((
                word["word"],
                seconds_to_ticks(word["start"]),
                seconds_to_ticks(word["end"])
            ))

    return utterances, words


class WhisperTranscriber:
    """Runs openai-whisper on a local checkpoint"""

    def __init__(self, beam_size: int = 5, language: str = "en"):
        self.beam_size = beam_size
        self.language = language

    def transcribe(
        self, model_path: str, wav_path: str, progress_callback: ProgressCallback
    ) -> Tuple[List[TickedSegment], List[TickedSegment]]:
        import whisper

        logger.info(f"Loading whisper model {model_path}")
        model = whisper.load_model(model_path)

        with forward_whisper_progress(progress_callback):
            result = model.transcribe(
                wav_path,
                language=self.language,
                word_timestamps=True,
                beam_size=self.beam_size,
                verbose=None
            )

        return ticked_segments(result)


def load_sidecar_transcript(json_path: str) -> List[TickedSegment]:
    """
    Parse a precomputed transcript's "segments" array into ticked triples

    Raises:
        PipelineError: when the file is unreadable or malformed
    """
    try:
        with open(json_path, 'rb') as f:
            transcript = json.load(f)
    except OSError as e:
        raise PipelineError(f"Couldn't read transcription JSON: {e}") from e
    except json.JSONDecodeError as e:
        raise PipelineError(f"Couldn't deserialise transcription JSON: {e}") from e

    if not isinstance(transcript, dict) or "segments" not in transcript:
        raise PipelineError("Couldn't get segments")

    try:
        segments = [Segment.from_dict(item) for item in transcript["segments"]]
    except (KeyError, TypeError, ValueError) as e:
        raise PipelineError(f"Couldn't deserialise segments: {e}") from e

    return [s.to_ticks() for s in segments]


def run_transcription(
    video_path: str,
    sink: ProgressSink,
    model_path: str,
    model_url: str,
    model_sha256: str,
    transcriber: Optional[Transcriber] = None,
    transcode: Callable[[str, str], str] = transcode_to_wav,
    reuse_sidecar: bool = True,
) -> Transcript:
    """
    Transcription branch: reuse a <stem>.json sidecar when present, otherwise
    transcode to WAV, ensure the model and run the transcriber.
    """
    json_path = sidecar_transcript_path(video_path)

    if reuse_sidecar and os.path.exists(json_path):
        logger.info(f"Reusing transcript {json_path}")
        sink.emit(Progress.preparing(Stage.TRANSCRIBING))
        utterances = load_sidecar_transcript(json_path)
        sink.emit(Progress.done(Stage.TRANSCRIBING))
        logger.info(f"Loaded {len(utterances)} utterances from sidecar transcript")
        return Transcript(utterances=utterances, words=None)

    transcriber = transcriber or WhisperTranscriber()

    with tempfile.TemporaryDirectory() as temp_dir:
        wav_path = os.path.join(temp_dir, "audio.wav")

        sink.emit(Progress.started(Stage.TRANSCODING))
        transcode(video_path, wav_path)
        sink.emit(Progress.done(Stage.TRANSCODING))

        ensure_model(model_path, model_url, model_sha256, sink)

        sink.emit(Progress.preparing(Stage.TRANSCRIBING))
        try:
            utterances, words = transcriber.transcribe(
                model_path, wav_path, sink.report_transcription_percent
            )
        except PipelineError:
            raise
        except Exception as e:
            raise PipelineError(f"Couldn't transcribe audio: {e}") from e
        sink.emit(Progress.done(Stage.TRANSCRIBING))

    logger.info(f"Transcription produced {len(utterances)} utterances and {len(words)} words")
    return Transcript(utterances=list(utterances), words=list(words))
