"""
Configuration management for the slides worker.

Centralizes configuration loading from environment variables and the
persisted AI settings file, providing type-safe access to both.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass

from pydantic import BaseModel, Field, ValidationError

from .models import PipelineError

logger = logging.getLogger("slides_worker")


WHISPER_MODEL_URL = (
    "https://openaipublicfiles.blob.core.windows.net/main/whisper/models/"
    "d7440d1dc186f76616474e0ff0b3b6b879abc9d1a4926b7adfa41db2d497ab4f/medium.en.pt"
)
WHISPER_MODEL_SHA256 = "d7440d1dc186f76616474e0ff0b3b6b879abc9d1a4926b7adfa41db2d497ab4f"

DEFAULT_SUMMARY_MODEL = "meta-llama/llama-3.1-8b-instruct:free"

DEFAULT_PROMPT_TEMPLATE = """The following is an excerpt from a lecture transcript:

##text##

Reformat this excerpt in paragraphed, readable form. Correct any spelling or grammar issues. Give only the reformatted text in your response."""


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class WorkerConfig:
    """Configuration for the slides worker"""

    # Storage
    DATA_DIR: str = os.path.join(os.path.expanduser("~"), ".slides")
    SETTINGS_FILE: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = ""

    # HTTP server
    HTTP_HOST: str = "127.0.0.1"
    HTTP_PORT: int = 52937

    # Scene segmentation
    SIMILARITY_THRESHOLD: float = 0.99
    MIN_SPLIT_GAP_SEC: float = 2.0
    SKIP_SECONDS: float = 1.0
    PROGRESS_INTERVAL_MS: int = 100
    ANALYSIS_WIDTH: int = 0  # 0 = compare at full resolution
    SIMILARITY_WORKERS: int = 0  # 0 = one per CPU

    # Decode failure policy
    STRICT_SCENE_DECODE: bool = True
    STRICT_PREVIEW_DECODE: bool = False

    # Transcription
    REUSE_SIDECAR_TRANSCRIPT: bool = True
    WHISPER_MODEL_URL: str = WHISPER_MODEL_URL
    WHISPER_MODEL_SHA256: str = WHISPER_MODEL_SHA256
    WHISPER_MODEL_FILE: str = "model.bin"

    # Summarization
    SUMMARY_PAUSE_SEC: float = 1.0

    def __post_init__(self):
        if not self.SETTINGS_FILE:
            self.SETTINGS_FILE = os.path.join(self.DATA_DIR, "settings.json")
        if not self.LOG_DIR:
            self.LOG_DIR = os.path.join(self.DATA_DIR, "logs")

    @property
    def videos_dir(self) -> str:
        return os.path.join(self.DATA_DIR, "videos")

    @property
    def model_path(self) -> str:
        return os.path.join(self.DATA_DIR, self.WHISPER_MODEL_FILE)

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        """Load configuration from environment variables"""
        data_dir = os.getenv("SLIDES_DATA_DIR", cls.DATA_DIR)

        return cls(
            DATA_DIR=data_dir,
            SETTINGS_FILE=os.getenv("SLIDES_SETTINGS_FILE", ""),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            LOG_DIR=os.getenv("LOG_DIR", ""),
            HTTP_HOST=os.getenv("SLIDES_HTTP_HOST", "127.0.0.1"),
            HTTP_PORT=int(os.getenv("SLIDES_HTTP_PORT", "52937")),
            SIMILARITY_THRESHOLD=float(os.getenv("SIMILARITY_THRESHOLD", "0.99")),
            MIN_SPLIT_GAP_SEC=float(os.getenv("MIN_SPLIT_GAP_SEC", "2.0")),
            SKIP_SECONDS=float(os.getenv("SKIP_SECONDS", "1.0")),
            PROGRESS_INTERVAL_MS=int(os.getenv("PROGRESS_INTERVAL_MS", "100")),
            ANALYSIS_WIDTH=int(os.getenv("ANALYSIS_WIDTH", "0")),
            SIMILARITY_WORKERS=int(os.getenv("SIMILARITY_WORKERS", "0")),
            STRICT_SCENE_DECODE=_env_bool("STRICT_SCENE_DECODE", "true"),
            STRICT_PREVIEW_DECODE=_env_bool("STRICT_PREVIEW_DECODE", "false"),
            REUSE_SIDECAR_TRANSCRIPT=_env_bool("REUSE_SIDECAR_TRANSCRIPT", "true"),
            WHISPER_MODEL_URL=os.getenv("WHISPER_MODEL_URL", WHISPER_MODEL_URL),
            WHISPER_MODEL_SHA256=os.getenv("WHISPER_MODEL_SHA256", WHISPER_MODEL_SHA256),
            WHISPER_MODEL_FILE=os.getenv("WHISPER_MODEL_FILE", "model.bin"),
            SUMMARY_PAUSE_SEC=float(os.getenv("SUMMARY_PAUSE_SEC", "1.0")),
        )

    def validate(self) -> None:
        """Validate configuration and raise errors for out-of-range values"""
        problems = []

        if not 0.0 <= self.SIMILARITY_THRESHOLD <= 1.0:
            problems.append("SIMILARITY_THRESHOLD must be within [0, 1]")

        if self.MIN_SPLIT_GAP_SEC < 0:
            problems.append("MIN_SPLIT_GAP_SEC must not be negative")

        if self.SKIP_SECONDS < 0:
            problems.append("SKIP_SECONDS must not be negative")

        if self.ANALYSIS_WIDTH < 0:
            problems.append("ANALYSIS_WIDTH must not be negative")

        if self.SIMILARITY_WORKERS < 0:
            problems.append("SIMILARITY_WORKERS must not be negative")

        if not 0 < self.HTTP_PORT < 65536:
            problems.append("SLIDES_HTTP_PORT must be a valid TCP port")

        if self.SUMMARY_PAUSE_SEC < 0:
            problems.append("SUMMARY_PAUSE_SEC must not be negative")

        if problems:
            raise ValueError(f"Invalid configuration: {'; '.join(problems)}")


class AISettings(BaseModel):
    """Summarization settings supplied by the user"""
    use_ai: bool = False
    base_url: str = "https://openrouter.ai/api/v1"
    key: str = ""
    model: str = DEFAULT_SUMMARY_MODEL
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE


class AppSettings(BaseModel):
    """Persisted application settings"""
    ai: AISettings = Field(default_factory=AISettings)


def load_settings(path: str) -> AppSettings:
    """
    Load settings from a JSON file.

    Returns defaults when the file does not exist. A file that exists but
    cannot be parsed is treated as corrupt input and raises PipelineError.
    """
    if not os.path.exists(path):
        logger.debug(f"No settings file at {path}, using defaults")
        return AppSettings()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return AppSettings.model_validate(data)
    except OSError as e:
        raise PipelineError(f"Couldn't read settings file {path}: {e}") from e
    except (json.JSONDecodeError, ValidationError) as e:
        raise PipelineError(f"Couldn't deserialise settings file {path}: {e}") from e


def save_settings(path: str, settings: AppSettings) -> None:
    """Persist settings as JSON"""
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(settings.model_dump_json(indent=2))
    except OSError as e:
        raise PipelineError(f"Failed to save settings to {path}: {e}") from e

    logger.info(f"Settings saved to {path}")
