"""
Region processing pipeline.

Runs the transcription and scene segmentation branches in parallel, joins
them into regions and optionally summarises each region.
"""

import time
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional

from .cache import CacheLocation
from .config import AppSettings, WorkerConfig
from .models import PipelineError, Region, Transcript, VideoAsset
from .pipeline.decoder import VideoDecoder
from .pipeline.frames import extract_previews
from .pipeline.normalize import transcode_to_wav
from .pipeline.regions import build_regions
from .pipeline.scenes import SceneDetectionParams, detect_scene_boundaries
from .pipeline.summarize import summarize_regions
from .pipeline.transcribe import Transcriber, run_transcription
from .progress import Progress, ProgressSink, Stage

logger = logging.getLogger("slides_worker")


class RegionProcessor:
    """Computes the regions of one video on a cache miss"""

    def __init__(
        self,
        config: WorkerConfig,
        settings: AppSettings,
        sink: ProgressSink,
        transcriber: Optional[Transcriber] = None,
        transcode: Callable[[str, str], str] = transcode_to_wav,
        chat_client: Optional[Any] = None,
    ):
        self.config = config
        self.settings = settings
        self.sink = sink
        self.transcriber = transcriber
        self.transcode = transcode
        self.chat_client = chat_client
        self.stages_completed: List[str] = []

    def process(self, asset: VideoAsset, location: CacheLocation) -> List[Region]:
        """
        Produce the final region list for a video.

        Raises:
            PipelineError: when either branch fails
        """
        self.stages_completed = []
        start = time.monotonic()

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="branch") as executor:
            transcript_future = executor.submit(self._transcription_branch, asset)
            splits_future = executor.submit(self._segmentation_branch, asset, location)

            # Join both before surfacing an error
            errors = [
                ("Transcription", transcript_future.exception()),
                ("Scene detection", splits_future.exception()),
            ]

        for branch, error in errors:
            if error is not None:
                if isinstance(error, PipelineError):
                    raise error
                raise PipelineError(f"{branch} failed: {error}") from error

        transcript: Transcript = transcript_future.result()
        splits: List[float] = splits_future.result()

        self.sink.emit(Progress.preparing(Stage.SUMMARISING))
        regions = build_regions(splits, transcript.utterances, transcript.words)
        self.stages_completed.append("regions")

        if self.settings.ai.use_ai:
            asyncio.run(summarize_regions(
                regions,
                self.settings.ai,
                self.sink,
                client=self.chat_client,
                pause_sec=self.config.SUMMARY_PAUSE_SEC
            ))
            self.stages_completed.append("summarise")

        logger.info(f"Processed {asset.path} into {len(regions)} regions in {time.monotonic() - start:.2f}s")
        return regions

    def _transcription_branch(self, asset: VideoAsset) -> Transcript:
        logger.info(f"TRANSCRIBE: Starting transcription branch for {asset.path}")
        transcript = run_transcription(
            asset.path,
            self.sink,
            model_path=self.config.model_path,
            model_url=self.config.WHISPER_MODEL_URL,
            model_sha256=self.config.WHISPER_MODEL_SHA256,
            transcriber=self.transcriber,
            transcode=self.transcode,
            reuse_sidecar=self.config.REUSE_SIDECAR_TRANSCRIPT
        )
        self.stages_completed.append("transcribe")
        return transcript

    def _segmentation_branch(self, asset: VideoAsset, location: CacheLocation) -> List[float]:
        logger.info(f"SCENES: Starting scene detection for {asset.path}")
        params = SceneDetectionParams(
            threshold=self.config.SIMILARITY_THRESHOLD,
            min_gap_sec=self.config.MIN_SPLIT_GAP_SEC,
            skip_seconds=self.config.SKIP_SECONDS,
            analysis_width=self.config.ANALYSIS_WIDTH,
            progress_interval_ms=self.config.PROGRESS_INTERVAL_MS,
            strict=self.config.STRICT_SCENE_DECODE,
            workers=self.config.SIMILARITY_WORKERS
        )

        with VideoDecoder(asset.path) as decoder:
            splits = detect_scene_boundaries(decoder, self.sink, params)
            self.stages_completed.append("scenes")

            logger.info(f"FRAMES: Starting preview extraction for {asset.path}")
            extract_previews(
                decoder,
                splits,
                location.output_dir,
                self.sink,
                strict=self.config.STRICT_PREVIEW_DECODE,
                progress_interval_ms=self.config.PROGRESS_INTERVAL_MS
            )
            self.stages_completed.append("previews")

        return splits
