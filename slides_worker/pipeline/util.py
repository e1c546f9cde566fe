import os
import hashlib
from pathlib import Path


HASH_CHUNK_SIZE = 8 * 1024 * 1024


def hash_file(path: str, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """SHA-256 of a file's full contents, streamed in chunks"""
    hasher = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


def sidecar_transcript_path(video_path: str) -> str:
    """<dir>/<stem>.json next to the source video"""
    path = Path(video_path)
    return str(path.with_name(f"{path.stem}.json"))


def preview_path(output_dir: str, idx: int) -> str:
    return os.path.join(output_dir, f"{idx}.png")


def format_timecode(seconds: float) -> str:
    """Format seconds as HH:MM:SS.mmm"""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{secs:06.3f}"


def ensure_dir(path: str):
    """Ensure directory exists"""
    os.makedirs(path, exist_ok=True)


def get_file_size_mb(file_path: str) -> float:
    """Get file size in MB"""
    try:
        size_bytes = os.path.getsize(file_path)
        return size_bytes / (1024 * 1024)
    except OSError:
        return 0.0
