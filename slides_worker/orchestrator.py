"""
Pipeline orchestration and execution management.

Resolves the cache directory for a video, short-circuits to publishing on a
cache hit, otherwise runs the RegionProcessor, and converts fatal failures
into a ProcessingResult carrying a single error string.
"""

import time
import logging
from typing import Optional, Dict, Any, Callable
from datetime import datetime

from .cache import CacheLocator, load_video_asset
from .config import AppSettings, WorkerConfig
from .http_server import SessionManager
from .models import ProcessingResult
from .processor import RegionProcessor
from .progress import Progress, ProgressSink, Stage
from .publisher import AssetPublisher
from .logging_setup import log_exception

logger = logging.getLogger("slides_worker")


ProcessorFactory = Callable[[WorkerConfig, AppSettings, ProgressSink], RegionProcessor]


class PipelineOrchestrator:
    """Manages pipeline execution flow and coordination"""

    def __init__(
        self,
        config: WorkerConfig,
        sink: ProgressSink,
        sessions: SessionManager,
        processor_factory: Optional[ProcessorFactory] = None,
    ):
        self.config = config
        self.sink = sink
        self.sessions = sessions
        self.locator = CacheLocator(config.videos_dir)
        self.publisher = AssetPublisher(sessions, sink)
        self.processor_factory = processor_factory or RegionProcessor
        self.stats = {
            'runs': 0,
            'runs_failed': 0,
            'cache_hits': 0,
            'total_processing_time': 0.0,
            'start_time': datetime.now()
        }

    def execute_pipeline(self, video_path: str, settings: AppSettings) -> ProcessingResult:
        """
        Execute the complete pipeline for one video.

        Args:
            video_path: Source video file
            settings: AI settings, read once for this run

        Returns:
            ProcessingResult with execution details
        """
        start_time = time.time()
        stages_completed = []
        self.stats['runs'] += 1

        try:
            logger.info(f"Executing pipeline for {video_path}")

            asset = load_video_asset(video_path)
            location = self.locator.locate(asset)
            stages_completed.append("hash")

            if location.is_complete():
                logger.info(f"Cache hit for {video_path}: {location.output_dir}")
                regions = location.load_manifest()
                secret = self.publisher.publish(asset, location)
                self.stats['cache_hits'] += 1
                stages_completed.append("publish")

                return ProcessingResult(
                    success=True,
                    stages_completed=stages_completed,
                    cache_hit=True,
                    secret=secret,
                    output_path=location.output_dir,
                    metrics={'regions_count': len(regions)},
                    processing_time_sec=time.time() - start_time
                )

            location.prepare()
            processor = self.processor_factory(self.config, settings, self.sink)

            try:
                regions = processor.process(asset, location)
            finally:
                stages_completed.extend(processor.stages_completed)

            self.sink.emit(Progress.done(Stage.SUMMARISING))
            secret = self.publisher.publish(asset, location, regions)
            stages_completed.append("publish")

            processing_time = time.time() - start_time
            self.stats['total_processing_time'] += processing_time
            logger.info(f"Pipeline completed for {video_path} in {processing_time:.2f}s")

            return ProcessingResult(
                success=True,
                stages_completed=stages_completed,
                secret=secret,
                output_path=location.output_dir,
                metrics={
                    'regions_count': len(regions),
                    'segments_count': sum(len(r.segments) for r in regions)
                },
                processing_time_sec=processing_time
            )

        except Exception as e:
            error_msg = f"Couldn't process regions: {str(e)}"
            log_exception(logger, error_msg)
            self.stats['runs_failed'] += 1

            return ProcessingResult(
                success=False,
                stages_completed=stages_completed,
                error=error_msg,
                metrics={
                    'failed_at_stage': stages_completed[-1] if stages_completed else 'start'
                },
                processing_time_sec=time.time() - start_time
            )

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        uptime = (datetime.now() - self.stats['start_time']).total_seconds()
        computed = self.stats['runs'] - self.stats['cache_hits'] - self.stats['runs_failed']

        return {
            'runs': self.stats['runs'],
            'runs_failed': self.stats['runs_failed'],
            'cache_hits': self.stats['cache_hits'],
            'total_processing_time': self.stats['total_processing_time'],
            'average_processing_time': (
                self.stats['total_processing_time'] / computed if computed > 0 else 0
            ),
            'uptime_seconds': uptime
        }
