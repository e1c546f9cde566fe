import os
import time
import asyncio
import hashlib
import logging
from typing import Optional

import httpx

from ..models import PipelineError
from ..progress import Progress, ProgressSink, Stage, estimate_eta
from .util import hash_file

logger = logging.getLogger("slides_worker")

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


def model_is_valid(model_path: str, expected_sha256: str) -> bool:
    """True when the model file exists and its content hash matches"""
    if not os.path.exists(model_path):
        return False

    try:
        actual = hash_file(model_path)
    except OSError as e:
        raise PipelineError(f"Couldn't read model file: {e}") from e

    if actual != expected_sha256:
        logger.warning(f"Model hash mismatch for {model_path}: {actual} != {expected_sha256}")
        return False
    return True


def _discard(part_path: str) -> None:
    if os.path.exists(part_path):
        os.remove(part_path)
        logger.info(f"Removed partial download {part_path}")


async def download_model(
    url: str,
    model_path: str,
    expected_sha256: str,
    sink: ProgressSink,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    """
    Stream the model to <model_path>.part, reporting (fraction, eta) after
    every chunk, then verify the hash and move it into place.
    """
    part_path = model_path + ".part"
    hasher = hashlib.sha256()
    owns_client = client is None
    client = client or httpx.AsyncClient(follow_redirects=True, timeout=httpx.Timeout(30.0, read=300.0))

    try:
        async with client.stream("GET", url) as response:
            response.raise_for_status()

            total_size = int(response.headers.get("content-length", 0))
            if total_size <= 0:
                raise PipelineError("Couldn't get content length")

            logger.info(f"Downloading model from {url} ({total_size / (1024 * 1024):.1f} MB)")

            start_time = time.monotonic()
            downloaded = 0

            with open(part_path, 'wb') as f:
                async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
                    hasher.update(chunk)

                    downloaded = min(total_size, downloaded + len(chunk))
                    sink.emit(Progress.update(
                        Stage.DOWNLOADING,
                        downloaded / total_size,
                        estimate_eta(start_time, downloaded, total_size)
                    ))

    except httpx.HTTPError as e:
        _discard(part_path)
        raise PipelineError(f"Error while downloading model: {e}") from e
    except OSError as e:
        _discard(part_path)
        raise PipelineError(f"Error while writing model file: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    actual = hasher.hexdigest()
    if actual != expected_sha256:
        _discard(part_path)
        raise PipelineError(f"Downloaded model hash {actual} does not match expected {expected_sha256}")

    os.replace(part_path, model_path)
    logger.info(f"Model saved to {model_path}")


def ensure_model(model_path: str, url: str, expected_sha256: str, sink: ProgressSink) -> str:
    """Make sure a verified transcription model is present locally"""
    if model_is_valid(model_path, expected_sha256):
        logger.info(f"Using cached model {model_path}")
        return model_path

    sink.emit(Progress.preparing(Stage.DOWNLOADING))
    os.makedirs(os.path.dirname(os.path.abspath(model_path)), exist_ok=True)
    asyncio.run(download_model(url, model_path, expected_sha256, sink))
    sink.emit(Progress.done(Stage.DOWNLOADING))

    return model_path
