import os
import time
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from ..models import DecodeError, PipelineError
from ..progress import Progress, ProgressSink, Stage, Throttle, estimate_eta
from .decoder import VideoDecoder
from .similarity import downscale, rgb_to_lab, similarity_lab
from .util import format_timecode

logger = logging.getLogger("slides_worker")


@dataclass
class SceneDetectionParams:
    threshold: float = 0.99
    min_gap_sec: float = 2.0
    skip_seconds: float = 1.0
    analysis_width: int = 0
    progress_interval_ms: int = 100
    strict: bool = True
    workers: int = 0  # 0 = one per CPU


def detect_scene_boundaries(
    decoder: VideoDecoder,
    sink: ProgressSink,
    params: Optional[SceneDetectionParams] = None,
) -> List[float]:
    """
    Scan the video once and return strictly increasing boundary timestamps.

    The first decoded frame is always a boundary and the total duration is
    always the last. A cut is a similarity below the threshold between
    consecutive compared frames; it is confirmed only if it lies more than
    min_gap_sec after the previous cut candidate. After every cut roughly
    skip_seconds of frames are grabbed without decoding.

    Returns:
        List of boundary offsets in seconds, at least two entries long.
    """
    params = params or SceneDetectionParams()
    workers = params.workers or os.cpu_count() or 1

    if workers <= 1:
        return _scan(decoder, sink, params, None, 1)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="similarity") as executor:
        return _scan(decoder, sink, params, executor, workers)


def _scan(
    decoder: VideoDecoder,
    sink: ProgressSink,
    params: SceneDetectionParams,
    executor: Optional[Executor],
    workers: int,
) -> List[float]:
    skip_frames = int(round(decoder.fps * params.skip_seconds))
    total_secs = decoder.reported_duration

    logger.info(
        f"Detecting scenes in {decoder.video_path}: {decoder.width}x{decoder.height} "
        f"@ {decoder.fps:.2f}fps, {format_timecode(total_secs)}, {workers} similarity workers"
    )
    sink.emit(Progress.preparing(Stage.PROCESSING))

    splits: List[float] = []
    naive_splits: List[float] = []
    # Lab pixels of the previously compared frame, converted once
    last_lab: Optional[np.ndarray] = None
    start_time = time.monotonic()
    throttle = Throttle(params.progress_interval_ms)

    while True:
        try:
            decoded = decoder.read()
        except DecodeError as e:
            if params.strict:
                raise
            logger.warning(f"Stopping scene scan early, remaining frames skipped: {e}")
            break

        if decoded is None:
            break

        _, timestamp, frame = decoded
        lab = rgb_to_lab(downscale(frame, params.analysis_width))

        if total_secs > 0 and timestamp > 0 and throttle.ready():
            sink.emit(Progress.update(
                Stage.PROCESSING,
                timestamp / total_secs,
                estimate_eta(start_time, timestamp, total_secs)
            ))

        if last_lab is None:
            splits.append(timestamp)
            naive_splits.append(timestamp)
        else:
            score = similarity_lab(last_lab, lab, executor, workers)

            if score < params.threshold:
                logger.debug(f"Cut candidate at {format_timecode(timestamp)} (similarity {score:.4f})")

                if timestamp - naive_splits[-1] > params.min_gap_sec:
                    splits.append(timestamp)

                naive_splits.append(timestamp)

                try:
                    decoder.skip(skip_frames)
                except DecodeError as e:
                    if params.strict:
                        raise
                    logger.warning(f"Stopping scene scan early, remaining frames skipped: {e}")
                    break

        last_lab = lab

    if not splits:
        raise PipelineError(f"No frames could be decoded from {decoder.video_path}")

    total_secs = max(total_secs, decoder.time_of(decoder.position))
    if total_secs <= splits[-1]:
        total_secs = splits[-1] + 1.0 / decoder.fps
    splits.append(total_secs)

    sink.emit(Progress.done(Stage.PROCESSING))
    logger.info(
        f"Scene detection completed: {len(splits) - 1} scenes, "
        f"{len(naive_splits)} raw cut candidates in {time.monotonic() - start_time:.2f}s"
    )
    return splits
