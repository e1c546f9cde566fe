import os
import time
import logging
from typing import List

from PIL import Image

from ..models import DecodeError, PipelineError
from ..progress import Progress, ProgressSink, Stage, Throttle, estimate_eta
from .decoder import VideoDecoder
from .util import preview_path

logger = logging.getLogger("slides_worker")


def middle_frame_indices(splits: List[float], fps: float) -> List[int]:
    """Frame index at the midpoint of every consecutive boundary pair"""
    return [int(round((start + end) / 2.0 * fps)) for start, end in zip(splits, splits[1:])]


def extract_previews(
    decoder: VideoDecoder,
    splits: List[float],
    output_dir: str,
    sink: ProgressSink,
    strict: bool = False,
    progress_interval_ms: int = 100,
) -> List[str]:
    """
    Save the midpoint frame of each scene as <idx>.png in output_dir.

    Frames between targets are skipped without retrieval. With strict=False a
    failure on one scene is logged and the remaining scenes still run.

    Returns:
        Paths of the previews that were written
    """
    sink.emit(Progress.preparing(Stage.GATHERING_PREVIEWS))
    decoder.seek_to_start()

    targets = middle_frame_indices(splits, decoder.fps)
    frames_to_decode = float(targets[-1]) if targets else 0.0
    start_time = time.monotonic()
    throttle = Throttle(progress_interval_ms)
    written: List[str] = []

    logger.info(f"Extracting {len(targets)} preview frames from {decoder.video_path}")

    for idx, target in enumerate(targets):
        frame_path = preview_path(output_dir, idx)

        try:
            if decoder.position > target:
                raise DecodeError(f"Frame {target} already passed (at {decoder.position})")

            while decoder.position < target:
                if decoder.skip(1) == 0:
                    raise DecodeError(f"End of stream before frame {target}")

                if frames_to_decode > 0 and throttle.ready():
                    sink.emit(Progress.update(
                        Stage.GATHERING_PREVIEWS,
                        decoder.position / frames_to_decode,
                        estimate_eta(start_time, decoder.position, frames_to_decode)
                    ))

            decoded = decoder.read()
            if decoded is None:
                raise DecodeError(f"End of stream at frame {target}")

            Image.fromarray(decoded[2]).save(frame_path)
            if not validate_preview_file(frame_path):
                raise OSError(f"{frame_path} is not a readable image")
            written.append(frame_path)
            logger.debug(f"Saved preview {idx} from frame {target}")

        except (DecodeError, OSError, ValueError) as e:
            if strict:
                raise PipelineError(f"Couldn't save preview image {idx}: {e}") from e
            logger.warning(f"Error in saving preview image {idx}: {e}")
            continue

    sink.emit(Progress.done(Stage.GATHERING_PREVIEWS))
    logger.info(f"Preview extraction completed: {len(written)}/{len(targets)} saved to {output_dir}")
    return written


def validate_preview_file(frame_path: str) -> bool:
    """Validate that a preview exists and is a readable image"""
    if not os.path.exists(frame_path):
        return False

    try:
        with Image.open(frame_path) as img:
            img.verify()
        return True
    except (OSError, SyntaxError, ValueError) as e:
        logger.debug(f"Preview {frame_path} failed verification: {e}")
        return False
