import cv2
import logging
import numpy as np
from typing import Optional, Tuple

from ..models import DecodeError
from .normalize import get_video_duration

logger = logging.getLogger("slides_worker")


class VideoDecoder:
    """
    Sequential OpenCV decoder that tracks the index of the next frame.

    read() returns RGB frames; skip() grabs frames without retrieving them.
    End of stream is reported as None, anything else raises DecodeError.
    """

    def __init__(self, video_path: str):
        self.video_path = video_path
        self.capture = cv2.VideoCapture(video_path)
        if not self.capture.isOpened():
            raise DecodeError(f"Couldn't open video: {video_path}")

        self.fps = self.capture.get(cv2.CAP_PROP_FPS) or 0.0
        if self.fps <= 0:
            self.capture.release()
            raise DecodeError(f"Couldn't determine frame rate of {video_path}")

        self.frame_count = int(self.capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self.width = int(self.capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self.capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.position = 0

    @property
    def reported_duration(self) -> float:
        if self.frame_count > 0:
            return self.frame_count / self.fps
        return get_video_duration(self.video_path)

    def time_of(self, index: int) -> float:
        return index / self.fps

    def read(self) -> Optional[Tuple[int, float, np.ndarray]]:
        """Decode the next frame as (index, seconds, rgb array)"""
        try:
            ok, frame = self.capture.read()
        except cv2.error as e:
            raise DecodeError(f"Couldn't decode frame {self.position}: {e}") from e

        if not ok or frame is None:
            return None

        index = self.position
        self.position += 1
        return index, self.time_of(index), cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def skip(self, count: int) -> int:
        """Advance past up to count frames without retrieving them"""
        skipped = 0
        for _ in range(count):
            try:
                ok = self.capture.grab()
            except cv2.error as e:
                raise DecodeError(f"Couldn't skip frame {self.position}: {e}") from e
            if not ok:
                break
            self.position += 1
            skipped += 1
        return skipped

    def seek_to_start(self) -> None:
        if not self.capture.set(cv2.CAP_PROP_POS_FRAMES, 0):
            # Some backends refuse to seek; reopening is equivalent
            self.capture.release()
            self.capture = cv2.VideoCapture(self.video_path)
            if not self.capture.isOpened():
                raise DecodeError(f"Couldn't reopen video: {self.video_path}")
        self.position = 0

    def close(self) -> None:
        self.capture.release()

    def __enter__(self) -> 'VideoDecoder':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
