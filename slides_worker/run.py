import sys
import json
import time
import signal
import logging
import argparse
from typing import Any, Optional

from .config import WorkerConfig, load_settings
from .http_server import SessionManager
from .logging_setup import setup_logging, log_exception
from .models import PipelineError
from .orchestrator import PipelineOrchestrator
from .progress import Progress, ProgressSink

logger = logging.getLogger("slides_worker")


def print_event(kind: str, payload: Any) -> None:
    """Write one event per line as JSON on stdout"""
    if isinstance(payload, Progress):
        event = {"event": kind, "payload": payload.to_dict()}
    else:
        secret, output_path = payload
        event = {"event": kind, "payload": [secret, output_path]}
    print(json.dumps(event), flush=True)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="slides-worker",
        description="Split a lecture video into transcript regions and serve it locally"
    )
    parser.add_argument("video", help="Path to the lecture video")
    parser.add_argument("--no-serve", action="store_true",
                        help="Exit after processing instead of serving the video until interrupted")
    parser.add_argument("--ai", dest="use_ai", action="store_true", default=None,
                        help="Summarise regions regardless of the settings file")
    parser.add_argument("--no-ai", dest="use_ai", action="store_false",
                        help="Skip summarisation regardless of the settings file")
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)

    config = WorkerConfig.from_env()
    setup_logging(config.LOG_LEVEL, config.LOG_DIR)

    try:
        config.validate()
        settings = load_settings(config.SETTINGS_FILE)
    except (ValueError, PipelineError) as e:
        log_exception(logger, f"Failed to initialize: {e}")
        return 2

    if args.use_ai is not None:
        settings.ai.use_ai = args.use_ai

    sink = ProgressSink(print_event)
    sessions = SessionManager(config.HTTP_HOST, config.HTTP_PORT)
    orchestrator = PipelineOrchestrator(config, sink, sessions)

    result = orchestrator.execute_pipeline(args.video, settings)
    sink.flush()

    if not result.success:
        print(result.error, file=sys.stderr)
        sink.close()
        return 1

    logger.info(
        f"Ready: http://{config.HTTP_HOST}:{config.HTTP_PORT}/{result.secret} "
        f"({'cache hit' if result.cache_hit else 'processed'}, output {result.output_path})"
    )

    if args.no_serve:
        sessions.shutdown()
        sink.close()
        return 0

    def handle_signal(signum, frame):
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, handle_signal)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        sessions.shutdown()
        sink.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
