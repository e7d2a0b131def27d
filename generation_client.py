"""
Provider-facing generation client.

Every call returns a GenerationResult instead of raising, so the retry policy can
decide what to do with failures. Two implementations share the interface:

  DirectClient        - calls Gemini / Veo / OpenAI through llm_utils
  BackendProxyClient  - calls the backend's /ai/* endpoints, which hold the provider keys
"""
import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

import config
import llm_utils
from errors import (
    AUTH_INVALID,
    ERROR_KINDS,
    RATE_LIMITED,
    SAFETY_FILTERED,
    TIMEOUT,
    UNAVAILABLE,
    UNKNOWN,
    ProviderError,
    UnknownProviderError,
    provider_error,
)
from scene_types import MediaInput


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one provider call: ok with a payload, or an error kind with a message."""

    ok: bool
    payload: Any = None
    mime_type: str = ""
    kind: str = ""
    message: str = ""
    tokens_used: int = 0
    uri: Optional[str] = None

    @classmethod
    def success(cls, payload: Any, mime_type: str = "", tokens_used: int = 0, uri: Optional[str] = None):
        return cls(ok=True, payload=payload, mime_type=mime_type, tokens_used=tokens_used, uri=uri)

    @classmethod
    def failure(cls, kind: str, message: str = ""):
        return cls(ok=False, kind=kind, message=message)

    def unwrap(self) -> Any:
        """Return the payload, or raise the ProviderError subclass matching kind."""
        if self.ok:
            return self.payload
        raise provider_error(self.kind, self.message)


def _status_code(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_error(exc: BaseException) -> str:
    """
    Map an SDK / HTTP exception onto a provider error kind.

    Status codes win over message text. Anything unrecognised is UNKNOWN, which
    is still retried.
    """
    if isinstance(exc, ProviderError):
        return exc.kind
    status = _status_code(exc)
    message = str(exc).lower()
    name = type(exc).__name__.lower()

    if status in (401, 403):
        return AUTH_INVALID
    if status == 429:
        return RATE_LIMITED
    if status in (408, 504) or "timeout" in name or "timed out" in message or "timeout" in message:
        return TIMEOUT
    if status in (500, 502, 503):
        return UNAVAILABLE
    if "rate limit" in message or "quota" in message or "resource_exhausted" in message:
        return RATE_LIMITED
    if "api key not valid" in message or "invalid api key" in message or "permission" in message:
        return AUTH_INVALID
    if "safety" in message or "blocked" in message or "moderation" in message:
        return SAFETY_FILTERED
    if "unavailable" in message or "overloaded" in message or "connection" in name:
        return UNAVAILABLE
    return UNKNOWN


def result_from_exception(exc: BaseException) -> GenerationResult:
    message = exc.detail if isinstance(exc, ProviderError) else str(exc)
    return GenerationResult.failure(classify_error(exc), message)


class GenerationClient(ABC):
    """Text, image and video generation. Implementations never raise for provider failures."""

    @abstractmethod
    def generate_text(self, prompt: str, image: Optional[MediaInput] = None,
                      json_schema: Optional[dict] = None) -> GenerationResult:
        """Payload is the reply text."""

    @abstractmethod
    def generate_image(self, prompt: str, reference_image: Optional[MediaInput] = None,
                       aspect_ratio: str = "1:1") -> GenerationResult:
        """Payload is image bytes."""

    @abstractmethod
    def generate_video(self, prompt: str, reference_image: Optional[MediaInput] = None,
                       duration_seconds: Optional[int] = None, aspect_ratio: str = "9:16") -> GenerationResult:
        """Payload is video bytes."""

    @abstractmethod
    def extend_video(self, prompt: str, previous_video: MediaInput,
                     aspect_ratio: str = "9:16") -> GenerationResult:
        """Payload is video bytes continuing previous_video."""


class DirectClient(GenerationClient):
    """Calls the providers directly with keys from .env."""

    def __init__(self, text_provider: Optional[str] = None, image_provider: Optional[str] = None,
                 on_progress: Optional[Callable[[str], None]] = None):
        self.text_provider = text_provider
        self.image_provider = image_provider
        self.on_progress = on_progress

    def _call(self, fn: Callable[[], Any]) -> GenerationResult:
        try:
            out = fn()
        except (ValueError, TypeError):
            # Bad arguments or config, not a provider failure
            raise
        except Exception as e:
            return result_from_exception(e)
        if isinstance(out, llm_utils.TextCompletion):
            return GenerationResult.success(out.text, mime_type="text/plain", tokens_used=out.tokens_used)
        return GenerationResult.success(out.data, mime_type=out.mime_type, uri=out.uri)

    def generate_text(self, prompt, image=None, json_schema=None):
        return self._call(lambda: llm_utils.generate_text(
            prompt,
            provider=self.text_provider,
            response_json_schema=json_schema,
            image=image,
        ))

    def generate_image(self, prompt, reference_image=None, aspect_ratio="1:1"):
        return self._call(lambda: llm_utils.generate_image(
            prompt,
            aspect_ratio=aspect_ratio,
            reference_image=reference_image,
            provider=self.image_provider,
        ))

    def generate_video(self, prompt, reference_image=None, duration_seconds=None, aspect_ratio="9:16"):
        return self._call(lambda: llm_utils.generate_video(
            prompt,
            reference_image=reference_image,
            duration_seconds=duration_seconds,
            aspect_ratio=aspect_ratio,
            on_progress=self.on_progress,
        ))

    def extend_video(self, prompt, previous_video, aspect_ratio="9:16"):
        return self._call(lambda: llm_utils.extend_video(
            prompt,
            previous_video=previous_video,
            aspect_ratio=aspect_ratio,
            on_progress=self.on_progress,
        ))




def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class BackendProxyClient(GenerationClient):
    """
    Calls the backend's AI proxy endpoints. Media travels as base64 strings both
    ways (imageBase64 / videoBase64 with a separate mimeType), and a failed
    call comes back as an HTTP error or {"success": false, "error": ...}.
    """

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 negative_prompt: str = llm_utils.NEGATIVE_VIDEO_PROMPT):
        self.base_url = (base_url or config.BACKEND_API_URL).rstrip("/")
        self.token = token if token is not None else config.BACKEND_API_TOKEN
        self.session = session or requests.Session()
        self.negative_prompt = negative_prompt

    def _post(self, path: str, body: dict, timeout: float) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        resp = self.session.post(f"{self.base_url}{path}", json=body, headers=headers, timeout=timeout)
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error") or resp.text
            except ValueError:
                detail = resp.text
            raise requests.HTTPError(f"{resp.status_code}: {detail}", response=resp)
        try:
            data = resp.json()
        except ValueError:
            raise UnknownProviderError(f"Backend returned invalid JSON from {path}")
        if not isinstance(data, dict):
            raise UnknownProviderError(f"Backend returned unexpected body from {path}")
        if not data.get("success", True):
            message = data.get("error") or "Generation failed"
            kind = data.get("kind")
            if kind not in ERROR_KINDS:
                kind = classify_error(RuntimeError(message))
            raise provider_error(kind, message)
        return data

    def _video_timeout(self) -> float:
        # The proxy polls the job itself before answering
        return config.Config().max_video_wait_seconds + config.VIDEO_TIMEOUT

    def _media_call(self, path: str, body: dict, timeout: float, key: str, default_mime: str) -> GenerationResult:
        try:
            data = self._post(path, body, timeout)
            encoded = data.get(key)
            if not encoded:
                raise UnknownProviderError(f"Backend response had no {key}")
            try:
                payload = base64.b64decode(encoded, validate=True)
            except ValueError:
                raise UnknownProviderError(f"Backend returned malformed {key}")
        except (ProviderError, requests.RequestException) as e:
            return result_from_exception(e)
        return GenerationResult.success(payload, mime_type=data.get("mimeType") or default_mime, uri=data.get("uri"))

    def generate_text(self, prompt, image=None, json_schema=None):
        body: dict[str, Any] = {"prompt": prompt}
        if image is not None:
            body["imageBase64"] = _b64(image.data)
            body["mimeType"] = image.mime_type
        if json_schema is not None:
            body["responseMimeType"] = "application/json"
        try:
            data = self._post("/ai/generate-text", body, config.DEFAULT_TIMEOUT)
            # A proxy may hand back already-decoded JSON; the parser accepts both
            text = data.get("text")
            if text is None:
                text = data.get("data")
            if text is None or (isinstance(text, str) and not text.strip()):
                raise UnknownProviderError("Empty response from AI")
        except (ProviderError, requests.RequestException) as e:
            return result_from_exception(e)
        return GenerationResult.success(text, mime_type="text/plain", tokens_used=data.get("tokensUsed") or 0)

    def generate_image(self, prompt, reference_image=None, aspect_ratio="1:1"):
        body: dict[str, Any] = {"prompt": prompt, "aspectRatio": aspect_ratio}
        if reference_image is not None:
            body["imageBase64"] = _b64(reference_image.data)
            body["mimeType"] = reference_image.mime_type
        return self._media_call("/ai/generate-image", body, config.IMAGE_TIMEOUT, "imageBase64", "image/png")

    def generate_video(self, prompt, reference_image=None, duration_seconds=None, aspect_ratio="9:16"):
        # Aspect ratio and clip length are fixed server side for proxied video
        body: dict[str, Any] = {"prompt": prompt, "negativePrompt": self.negative_prompt}
        path = "/ai/generate-video"
        if reference_image is not None:
            body["imageBase64"] = _b64(reference_image.data)
            body["mimeType"] = reference_image.mime_type
            path = "/ai/generate-video-with-reference"
        return self._media_call(path, body, self._video_timeout(), "videoBase64", "video/mp4")

    def extend_video(self, prompt, previous_video, aspect_ratio="9:16"):
        body = {
            "prompt": prompt,
            "videoBase64": _b64(previous_video.data),
            "negativePrompt": self.negative_prompt,
        }
        return self._media_call("/ai/extend-video", body, self._video_timeout(), "videoBase64", "video/mp4")
