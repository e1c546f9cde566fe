import hashlib
import os
import shutil
from types import SimpleNamespace

import pytest

from slides_worker.config import AISettings, AppSettings, WorkerConfig
from slides_worker import processor as processor_module
from slides_worker.http_server import SessionManager
from slides_worker.models import PipelineError
from slides_worker.orchestrator import PipelineOrchestrator
from slides_worker.processor import RegionProcessor
from slides_worker.progress import Stage, State

UTTERANCES = [("hello", 0, 150), ("world", 150, 350), ("[BLANK_AUDIO]", 900, 1000)]


class FakeTranscriber:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def transcribe(self, model_path, wav_path, progress_callback):
        self.calls += 1
        progress_callback(50)
        progress_callback(100)
        if self.error:
            raise self.error
        return UTTERANCES, [("hello", 0, 150)]


def fake_transcode(input_path, output_path):
    with open(output_path, "wb") as f:
        f.write(b"RIFF")
    return output_path


class FakeSession:
    def __init__(self, secret, path):
        self.secret = secret
        self.path = path
        self.running = False

    def start(self):
        self.running = True

    def stop(self):
        self.running = False


class FakeChat:
    def __init__(self, replies):
        self.replies = list(replies)
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self.create))

    async def create(self, **kwargs):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


@pytest.fixture
def worker_config(tmp_path):
    config = WorkerConfig(
        DATA_DIR=str(tmp_path / "data"),
        SUMMARY_PAUSE_SEC=0.0,
        REUSE_SIDECAR_TRANSCRIPT=False,
    )
    os.makedirs(config.DATA_DIR)
    with open(config.model_path, "wb") as f:
        f.write(b"weights")
    config.WHISPER_MODEL_SHA256 = hashlib.sha256(b"weights").hexdigest()
    return config


@pytest.fixture
def sessions():
    return SessionManager(session_factory=FakeSession)


def _factory(transcriber, calls=None, chat_client=None):
    def build(config, settings, sink):
        if calls is not None:
            calls.append(settings)
        return RegionProcessor(config, settings, sink, transcriber=transcriber,
                               transcode=fake_transcode, chat_client=chat_client)
    return build


def test_first_run_computes_and_second_run_hits_cache(cut_video, worker_config, sink, sessions):
    calls = []
    orchestrator = PipelineOrchestrator(worker_config, sink, sessions,
                                        processor_factory=_factory(FakeTranscriber(), calls))

    first = orchestrator.execute_pipeline(cut_video, AppSettings())

    assert first.success, first.error
    assert not first.cache_hit
    assert first.metrics["regions_count"] == 2
    assert os.path.isfile(os.path.join(first.output_path, "regions.json"))
    assert os.path.isfile(os.path.join(first.output_path, "0.png"))
    assert os.path.isfile(os.path.join(first.output_path, "1.png"))
    assert sessions.current.secret == first.secret
    assert sink.completions() == [(first.secret, first.output_path)]

    regions = orchestrator.locator.locate(
        SimpleNamespace(content_hash=os.path.basename(first.output_path))
    ).load_manifest()
    assert [(r.start, r.end) for r in regions] == [pytest.approx((0.0, 4.0)), pytest.approx((4.0, 10.0))]
    assert regions[0].summary == "hello world"
    assert regions[1].summary == ""
    assert regions[1].segments == []

    progress = sink.progress()
    assert progress[-1].stage == Stage.SUMMARISING and progress[-1].state == State.DONE

    # Same bytes under another name resolve to the same cache entry
    copy = os.path.join(os.path.dirname(cut_video), "copy.avi")
    shutil.copyfile(cut_video, copy)
    second = orchestrator.execute_pipeline(copy, AppSettings())

    assert second.success
    assert second.cache_hit
    assert second.output_path == first.output_path
    assert second.secret != first.secret
    assert len(calls) == 1
    assert sink.completions()[-1] == (second.secret, second.output_path)
    assert orchestrator.get_stats()["cache_hits"] == 1


def test_failed_branch_leaves_no_manifest(cut_video, worker_config, sink, sessions):
    transcriber = FakeTranscriber(error=RuntimeError("out of memory"))
    orchestrator = PipelineOrchestrator(worker_config, sink, sessions,
                                        processor_factory=_factory(transcriber))

    result = orchestrator.execute_pipeline(cut_video, AppSettings())

    assert not result.success
    assert result.error.startswith("Couldn't process regions")
    assert "out of memory" in result.error
    assert sink.completions() == []
    assert sessions.current is None

    videos_dir = worker_config.videos_dir
    for entry in os.listdir(videos_dir):
        assert not os.path.exists(os.path.join(videos_dir, entry, "regions.json"))

    # An incomplete directory is recomputed on the next run
    retry = PipelineOrchestrator(worker_config, sink, sessions,
                                 processor_factory=_factory(FakeTranscriber()))
    assert retry.execute_pipeline(cut_video, AppSettings()).cache_hit is False
    assert orchestrator.get_stats()["runs_failed"] == 1


def test_missing_video_reports_error(tmp_path, worker_config, sink, sessions):
    orchestrator = PipelineOrchestrator(worker_config, sink, sessions,
                                        processor_factory=_factory(FakeTranscriber()))

    result = orchestrator.execute_pipeline(str(tmp_path / "nope.mp4"), AppSettings())

    assert not result.success
    assert "nope.mp4" in result.error


def test_summary_failure_keeps_raw_text(cut_video, worker_config, sink, sessions):
    chat = FakeChat([RuntimeError("rate limited")])
    settings = AppSettings(ai=AISettings(use_ai=True, key="k"))
    orchestrator = PipelineOrchestrator(worker_config, sink, sessions,
                                        processor_factory=_factory(FakeTranscriber(), chat_client=chat))

    result = orchestrator.execute_pipeline(cut_video, settings)

    assert result.success
    assert "summarise" in result.stages_completed
    regions = orchestrator.locator.locate(
        SimpleNamespace(content_hash=os.path.basename(result.output_path))
    ).load_manifest()
    assert regions[0].summary == "hello world"
    assert chat.replies == []


def test_summary_replaces_region_text(cut_video, worker_config, sink, sessions):
    chat = FakeChat(["Here you go:\n\nHello, world."])
    settings = AppSettings(ai=AISettings(use_ai=True, key="k"))
    orchestrator = PipelineOrchestrator(worker_config, sink, sessions,
                                        processor_factory=_factory(FakeTranscriber(), chat_client=chat))

    result = orchestrator.execute_pipeline(cut_video, settings)

    regions = orchestrator.locator.locate(
        SimpleNamespace(content_hash=os.path.basename(result.output_path))
    ).load_manifest()
    assert regions[0].summary == "Hello, world."
    assert regions[1].summary == ""


def test_summarising_done_precedes_completion(cut_video, worker_config, sink, sessions):
    orchestrator = PipelineOrchestrator(worker_config, sink, sessions,
                                        processor_factory=_factory(FakeTranscriber()))

    orchestrator.execute_pipeline(cut_video, AppSettings())
    sink.flush()

    kinds = [
        "complete" if kind == "complete" else (payload.stage, payload.state)
        for kind, payload in sink.events
    ]
    assert kinds.index((Stage.SUMMARISING, State.DONE)) < kinds.index("complete")


def test_unexpected_branch_error_is_prefixed_once(cut_video, worker_config, sink, sessions, monkeypatch):
    def broken_scan(decoder, sink_arg, params=None):
        raise RuntimeError("codec blew up")

    monkeypatch.setattr(processor_module, "detect_scene_boundaries", broken_scan)
    orchestrator = PipelineOrchestrator(worker_config, sink, sessions,
                                        processor_factory=_factory(FakeTranscriber()))

    result = orchestrator.execute_pipeline(cut_video, AppSettings())

    assert not result.success
    assert result.error == "Couldn't process regions: Scene detection failed: codec blew up"


class UnbindableSession(FakeSession):
    def start(self):
        raise PipelineError("Couldn't serve video on 127.0.0.1:52937")


def test_serving_failure_fails_the_run(cut_video, worker_config, sink):
    sessions = SessionManager(session_factory=UnbindableSession)
    orchestrator = PipelineOrchestrator(worker_config, sink, sessions,
                                        processor_factory=_factory(FakeTranscriber()))

    result = orchestrator.execute_pipeline(cut_video, AppSettings())

    assert not result.success
    assert result.secret is None
    assert "Couldn't serve video" in result.error
    assert sink.completions() == []
    assert sessions.current is None
