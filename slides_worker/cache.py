"""
Content-addressed cache of processed videos.

Each video maps to <data>/videos/<sha256>. A directory counts as done only
once regions.json exists; the manifest is written last and atomically.
"""

import os
import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from .models import PipelineError, Region, VideoAsset
from .pipeline.util import ensure_dir, get_file_size_mb, hash_file

logger = logging.getLogger("slides_worker")

MANIFEST_NAME = "regions.json"
PLAYBACK_POSITION_NAME = "current_time.txt"


def load_video_asset(video_path: str) -> VideoAsset:
    """Hash the source video once and bundle the result with its path"""
    if not os.path.isfile(video_path):
        raise PipelineError(f"Couldn't read video: {video_path} does not exist")

    try:
        content_hash = hash_file(video_path)
    except OSError as e:
        raise PipelineError(f"Couldn't read video: {e}") from e

    logger.info(f"Hashed {video_path} ({get_file_size_mb(video_path):.1f} MB): {content_hash}")
    return VideoAsset(path=os.path.abspath(video_path), content_hash=content_hash)


@dataclass(frozen=True)
class CacheLocation:
    """Output directory for one content hash"""
    output_dir: str

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.output_dir, MANIFEST_NAME)

    @property
    def temp_manifest_path(self) -> str:
        return self.manifest_path + ".tmp"

    def is_complete(self) -> bool:
        return os.path.isfile(self.manifest_path)

    def prepare(self) -> None:
        """Create the directory for a fresh run, clearing leftovers of an interrupted one"""
        try:
            ensure_dir(self.output_dir)
            if os.path.exists(self.temp_manifest_path):
                logger.warning(f"Removing stale manifest from interrupted run: {self.temp_manifest_path}")
                os.remove(self.temp_manifest_path)
        except OSError as e:
            raise PipelineError(f"Couldn't ensure output folder: {e}") from e

    def write_manifest(self, regions: List[Region]) -> None:
        """Serialize regions to a temp file then rename it into place"""
        try:
            with open(self.temp_manifest_path, 'w', encoding='utf-8') as f:
                json.dump([r.to_dict() for r in regions], f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(self.temp_manifest_path, self.manifest_path)
        except OSError as e:
            raise PipelineError(f"Couldn't write {MANIFEST_NAME}: {e}") from e

        logger.info(f"Wrote manifest with {len(regions)} regions to {self.manifest_path}")

    def load_manifest(self) -> List[Region]:
        return load_regions(self.manifest_path)


class CacheLocator:
    """Maps video assets to their cache directories"""

    def __init__(self, videos_dir: str):
        self.videos_dir = videos_dir

    def locate(self, asset: VideoAsset) -> CacheLocation:
        return CacheLocation(os.path.join(self.videos_dir, asset.content_hash))


def load_regions(manifest_path: str) -> List[Region]:
    """Read a manifest back into Region objects"""
    try:
        with open(manifest_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return [Region.from_dict(item) for item in data]
    except OSError as e:
        raise PipelineError(f"Couldn't read {manifest_path}: {e}") from e
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise PipelineError(f"Couldn't deserialise {manifest_path}: {e}") from e


def save_playback_position(output_dir: str, seconds: float) -> None:
    """Remember where the viewer left off in this video"""
    try:
        with open(os.path.join(output_dir, PLAYBACK_POSITION_NAME), 'w', encoding='utf-8') as f:
            f.write(str(seconds))
    except OSError as e:
        raise PipelineError(f"Failed to save current time: {e}") from e


def load_playback_position(output_dir: str) -> Optional[float]:
    path = os.path.join(output_dir, PLAYBACK_POSITION_NAME)
    if not os.path.exists(path):
        return None

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return float(f.read().strip())
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable playback position {path}: {e}")
        return None
