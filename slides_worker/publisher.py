import logging
from typing import List, Optional

from .cache import CacheLocation
from .http_server import SessionManager
from .models import Region, VideoAsset
from .progress import ProgressSink

logger = logging.getLogger("slides_worker")


class AssetPublisher:
    """Persists the manifest and exposes the source video to the caller"""

    def __init__(self, sessions: SessionManager, sink: ProgressSink):
        self.sessions = sessions
        self.sink = sink

    def publish(self, asset: VideoAsset, location: CacheLocation,
                regions: Optional[List[Region]] = None) -> str:
        """
        Write regions (when given) then serve the video under a new secret.

        Returns:
            The secret path segment the video is served under
        """
        if regions is not None:
            location.write_manifest(regions)

        secret = self.sessions.replace(asset.path)
        self.sink.complete(secret, location.output_dir)

        logger.info(f"Published {asset.path} from {location.output_dir}")
        return secret
