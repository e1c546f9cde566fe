import os
import ffmpeg
import logging

from ..models import PipelineError

logger = logging.getLogger("slides_worker")


def transcode_to_wav(input_path: str, output_path: str) -> str:
    """
    Extract the audio track as mono, 16kHz, 16-bit PCM WAV

    Returns:
        The output WAV path
    """
    try:
        logger.info(f"Extracting audio: {input_path} -> {output_path}")

        (
            ffmpeg
            .input(input_path)
            .audio
            .output(
                output_path,
                acodec='pcm_s16le',       # 16-bit PCM
                ac=1,                     # mono
                ar=16000                  # 16kHz sample rate
            )
            .overwrite_output()
            .run(quiet=True)
        )

        if not os.path.exists(output_path):
            raise PipelineError("Transcoding failed - output file not created")

        return output_path

    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors='replace') if e.stderr else str(e)
        raise PipelineError(f"Couldn't transcode video to WAV: {stderr}") from e
    except OSError as e:
        raise PipelineError(f"Couldn't transcode video to WAV: {e}") from e


def get_video_duration(video_path: str) -> float:
    """Get video duration in seconds"""
    try:
        probe = ffmpeg.probe(video_path)
        video_stream = next(stream for stream in probe['streams'] if stream['codec_type'] == 'video')
        duration = video_stream.get('duration') or probe.get('format', {}).get('duration', 0)
        return float(duration)
    except Exception as e:
        logger.error(f"Error getting duration for {video_path}: {e}")
        return 0.0
