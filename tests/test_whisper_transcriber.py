import sys
import types

import pytest
import tqdm

from slides_worker.pipeline.transcribe import (
    WhisperTranscriber,
    forward_whisper_progress,
    percent_progress_bar,
    ticked_segments,
)
from slides_worker.progress import Stage, State

RESULT = {
    "segments": [
        {
            "text": " Hello there",
            "start": 0.0,
            "end": 1.234,
            "words": [
                {"word": " Hello", "start": 0.0, "end": 0.504},
                {"word": "[_TT_25]", "start": 0.5, "end": 0.5},
                {"word": " there", "start": 0.6, "end": 1.234},
            ],
        },
        {"text": " Next", "start": 2.0, "end": 2.5},
    ]
}


class FakeWhisperModel:
    """Drives progress the way whisper.transcribe does: through its module-level tqdm name"""

    def __init__(self):
        self.calls = []

    def transcribe(self, wav_path, **kwargs):
        self.calls.append((wav_path, kwargs))
        module = sys.modules["whisper.transcribe"]
        with module.tqdm.tqdm(total=200, unit="frames", disable=True) as bar:
            for step in (50, 100, 50):
                bar.update(step)
        return RESULT


@pytest.fixture
def fake_whisper(monkeypatch):
    model = FakeWhisperModel()
    package = types.ModuleType("whisper")
    package.loaded = []

    def load_model(path):
        package.loaded.append(path)
        return model

    package.load_model = load_model
    transcribe_module = types.ModuleType("whisper.transcribe")
    transcribe_module.tqdm = tqdm
    package.transcribe = transcribe_module

    monkeypatch.setitem(sys.modules, "whisper", package)
    monkeypatch.setitem(sys.modules, "whisper.transcribe", transcribe_module)
    return package, transcribe_module, model


def test_results_convert_to_ticks_without_special_tokens():
    utterances, words = ticked_segments(RESULT)

    assert utterances == [(" Hello there", 0, 123), (" Next", 200, 250)]
    assert words == [(" Hello", 0, 50), (" there", 60, 123)]


def test_progress_bar_reports_each_percent_once():
    seen = []
    bar_class = percent_progress_bar(seen.append)

    with bar_class(total=3, disable=True) as bar:
        bar.update(1)
        bar.update(0)
        bar.update(2)

    assert seen == [33, 100]


def test_transcriber_forwards_percent_to_sink(fake_whisper, sink):
    package, transcribe_module, model = fake_whisper

    utterances, words = WhisperTranscriber().transcribe(
        "/models/model.bin", "/tmp/audio.wav", sink.report_transcription_percent
    )

    assert package.loaded == ["/models/model.bin"]
    assert model.calls[0][0] == "/tmp/audio.wav"
    assert model.calls[0][1]["word_timestamps"] is True
    assert utterances[0] == (" Hello there", 0, 123)
    assert words[-1] == (" there", 60, 123)

    updates = [p for p in sink.progress() if p.stage == Stage.TRANSCRIBING and p.state == State.PROGRESS]
    assert [p.fraction for p in updates] == pytest.approx([0.25, 0.75, 1.0])
    assert transcribe_module.tqdm is tqdm


def test_progress_hook_is_removed_after_failure(fake_whisper):
    _, transcribe_module, _ = fake_whisper

    with pytest.raises(RuntimeError):
        with forward_whisper_progress(lambda percent: None):
            assert transcribe_module.tqdm is not tqdm
            raise RuntimeError("decode failed")

    assert transcribe_module.tqdm is tqdm
