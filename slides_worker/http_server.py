import time
import logging
import secrets
import threading
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import FileResponse

from .models import PipelineError

logger = logging.getLogger("slides_worker")


def generate_secret() -> str:
    """Four random 64-bit integers joined with dashes"""
    return "-".join(str(secrets.randbits(64)) for _ in range(4))


def build_app(secret: str, video_path: str) -> FastAPI:
    """App that serves video_path at /<secret> and nothing else"""
    app = FastAPI(title="Slides video server", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(f"/{secret}")
    async def serve_video():
        return FileResponse(video_path)

    return app


class ServingSession:
    """One uvicorn server running in a background thread"""

    def __init__(self, secret: str, video_path: str, host: str = "127.0.0.1", port: int = 52937):
        self.secret = secret
        self.video_path = video_path
        self.host = host
        self.port = port
        self.server = uvicorn.Server(uvicorn.Config(
            build_app(secret, video_path),
            host=host,
            port=port,
            log_level="warning",
            access_log=False
        ))
        self.thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def start(self, timeout: float = 5.0) -> None:
        """Start serving and wait until the socket is bound"""
        def run_server():
            try:
                self.server.run()
            except SystemExit as e:
                # uvicorn exits when the socket cannot be bound
                logger.error(f"HTTP server exited with code {e.code}")
            except Exception as e:
                logger.error(f"HTTP server error: {str(e)}")

        self.thread = threading.Thread(target=run_server, name="video-server", daemon=True)
        self.thread.start()

        deadline = time.monotonic() + timeout
        while not self.server.started and self.thread.is_alive() and time.monotonic() < deadline:
            time.sleep(0.01)

        if not self.server.started:
            self.stop(timeout)
            raise PipelineError(f"Couldn't serve video on {self.host}:{self.port}")

        logger.info(f"Serving {self.video_path} on http://{self.host}:{self.port}/<secret>")

    def stop(self, timeout: float = 5.0) -> None:
        """Ask the server to exit and wait for its thread"""
        self.server.should_exit = True
        if self.thread is not None:
            self.thread.join(timeout)
            if self.thread.is_alive():
                logger.warning("Video server did not stop in time, forcing exit")
                self.server.force_exit = True
                self.thread.join(timeout)
        logger.info("Video server stopped")


SessionFactory = Callable[[str, str], ServingSession]


class SessionManager:
    """
    Holds at most one active ServingSession.

    replace() takes the current session out, stops it and waits for it to
    finish before the new one starts, so two servers never hold the port.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 52937,
                 session_factory: Optional[SessionFactory] = None):
        self.host = host
        self.port = port
        self._session_factory = session_factory or (
            lambda secret, path: ServingSession(secret, path, host=self.host, port=self.port)
        )
        self._lock = threading.Lock()
        self._current: Optional[ServingSession] = None

    @property
    def current(self) -> Optional[ServingSession]:
        return self._current

    def replace(self, video_path: str) -> str:
        """
        Serve video_path under a fresh secret, superseding any previous session

        Raises:
            PipelineError: when the new listener fails to start; no session is
            left current in that case
        """
        with self._lock:
            previous, self._current = self._current, None
            if previous is not None:
                logger.info("Stopping previous video server")
                previous.stop()

            secret = generate_secret()
            session = self._session_factory(secret, video_path)
            session.start()
            self._current = session

        return secret

    def shutdown(self) -> None:
        with self._lock:
            previous, self._current = self._current, None
            if previous is not None:
                previous.stop()
