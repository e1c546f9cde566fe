from __future__ import annotations

import json
import os
from typing import Any, List, Sequence, Tuple

import cv2
import numpy as np
import pytest

from slides_worker.config import WorkerConfig
from slides_worker.progress import Progress, ProgressSink

RED = (0, 0, 255)
BLUE = (255, 0, 0)
GREEN = (0, 255, 0)


def write_video(path: str, colours: Sequence[Tuple[int, int, int]], fps: int = 10,
                size: Tuple[int, int] = (64, 48)) -> str:
    """Write one solid BGR frame per entry of colours as an MJPG AVI."""
    width, height = size
    writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*"MJPG"), fps, (width, height))
    assert writer.isOpened()
    for colour in colours:
        frame = np.zeros((height, width, 3), dtype=np.uint8)
        frame[:, :] = colour
        writer.write(frame)
    writer.release()
    return path


class RecordingSink(ProgressSink):
    """ProgressSink that keeps every delivered event."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []
        super().__init__(lambda kind, payload: self.events.append((kind, payload)))

    def progress(self) -> List[Progress]:
        self.flush()
        return [p for kind, p in self.events if kind == "progress"]

    def completions(self) -> List[Tuple[str, str]]:
        self.flush()
        return [p for kind, p in self.events if kind == "complete"]


@pytest.fixture
def sink():
    s = RecordingSink()
    yield s
    s.close()


@pytest.fixture
def cut_video(tmp_path) -> str:
    """10 seconds at 10fps: red until 4s, then blue."""
    return write_video(str(tmp_path / "lecture.avi"), [RED] * 40 + [BLUE] * 60)


@pytest.fixture
def static_video(tmp_path) -> str:
    """3 seconds of a single colour."""
    return write_video(str(tmp_path / "static.avi"), [GREEN] * 30)


@pytest.fixture
def config(tmp_path) -> WorkerConfig:
    return WorkerConfig(DATA_DIR=str(tmp_path / "data"), SUMMARY_PAUSE_SEC=0.0)


def write_sidecar(video_path: str, segments: List[dict]) -> str:
    stem, _ = os.path.splitext(video_path)
    path = stem + ".json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"segments": segments}, f)
    return path
