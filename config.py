"""
Configuration settings for generation orchestration.
Values come from the environment (.env is loaded by python-dotenv); the Config
class holds the limits the pipeline enforces.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# LLM provider and model selection (from .env); used by llm_utils
# TEXT_PROVIDER / IMAGE_PROVIDER: "google" or "openai". Video is Google (Veo) only.
TEXT_PROVIDER = os.getenv("TEXT_PROVIDER", "google").lower()
TEXT_MODEL_OPENAI = os.getenv("TEXT_MODEL_OPENAI", "gpt-4.1-mini")
TEXT_MODEL_GOOGLE = os.getenv("TEXT_MODEL_GOOGLE", "gemini-2.5-flash")
IMAGE_PROVIDER = os.getenv("IMAGE_PROVIDER", "google").lower()
IMAGE_MODEL_OPENAI = os.getenv("IMAGE_MODEL_OPENAI", "gpt-image-1")
IMAGE_MODEL_GOOGLE = os.getenv("IMAGE_MODEL_GOOGLE", "gemini-2.5-flash-image")
VIDEO_MODEL_GOOGLE = os.getenv("VIDEO_MODEL_GOOGLE", "veo-3.1-generate-preview")

# Backend REST API (generation ledger, credit balance, optional provider proxy)
BACKEND_API_URL = os.getenv("BACKEND_API_URL", "http://localhost:3001/api").rstrip("/")
BACKEND_API_TOKEN = os.getenv("BACKEND_API_TOKEN", "")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


# Per-operation request timeouts (seconds)
DEFAULT_TIMEOUT = _env_float("DEFAULT_TIMEOUT", 30.0)
IMAGE_TIMEOUT = _env_float("IMAGE_TIMEOUT", 60.0)
VIDEO_TIMEOUT = _env_float("VIDEO_TIMEOUT", 300.0)

# Long-running video jobs: 60 polls x 10s = 10 minutes max
VIDEO_POLL_INTERVAL = _env_float("VIDEO_POLL_INTERVAL", 10.0)
VIDEO_MAX_POLLS = _env_int("VIDEO_MAX_POLLS", 60)

# Retry policy: RETRY_ATTEMPTS additional attempts, linear backoff of RETRY_DELAY * attempt
RETRY_ATTEMPTS = _env_int("RETRY_ATTEMPTS", 2)
RETRY_DELAY = _env_float("RETRY_DELAY", 1.0)

DEBUG = os.getenv("DEBUG", "").lower() in ("1", "true", "yes")


class Config:
    # Story settings
    min_story_segments = 2
    max_story_segments = 6

    # Output settings
    video_aspect_ratio = "9:16"
    image_aspect_ratio = "1:1"

    def clamp_segment_count(self, segment_count: int) -> int:
        """Clamp a requested story length into [min_story_segments, max_story_segments]."""
        return min(max(int(segment_count), self.min_story_segments), self.max_story_segments)

    @property
    def max_video_wait_seconds(self) -> float:
        return VIDEO_POLL_INTERVAL * VIDEO_MAX_POLLS
