"""
Unified provider calls for text, image and video generation.
Dispatches to Google (Gemini / Veo) or OpenAI based on .env TEXT_PROVIDER / IMAGE_PROVIDER.
Video is Google (Veo) only.

.env variables:
  TEXT_PROVIDER      - "google" or "openai" (default: google)
  TEXT_MODEL_GOOGLE  - Gemini text model
  TEXT_MODEL_OPENAI  - OpenAI chat model
  IMAGE_PROVIDER     - "google" or "openai" (default: google)
  IMAGE_MODEL_GOOGLE - Image-capable Gemini model
  IMAGE_MODEL_OPENAI - OpenAI image model
  VIDEO_MODEL_GOOGLE - Veo model
  GOOGLE_API_KEY     - Required for Google (GEMINI_API_KEY also supported)
  OPENAI_API_KEY     - Required for OpenAI

Functions here raise: errors.ProviderError subclasses for outcomes they can
recognise (blocked output, missing keys, polling exhausted), SDK/HTTP exceptions
otherwise. generation_client turns both into GenerationResult values.
"""

import base64
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

import config
from errors import AuthInvalid, ProviderTimeout, SafetyFiltered, UnknownProviderError
from scene_types import MediaInput

NEGATIVE_VIDEO_PROMPT = (
    "distorted, low quality, watermark, blurry, deformed, ugly, bad anatomy, bad quality, low resolution"
)


@dataclass(frozen=True)
class TextCompletion:
    text: str
    tokens_used: int = 0


@dataclass(frozen=True)
class MediaPayload:
    data: bytes
    mime_type: str
    uri: Optional[str] = None


def _log(msg: str, verbose_only: bool = False) -> None:
    if verbose_only and not config.DEBUG:
        return
    print(f"[PROVIDER] {msg}")


def _google_api_key() -> str:
    api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise AuthInvalid(
            "GOOGLE_API_KEY or GEMINI_API_KEY is not set. Set one in .env for Google (Gemini/Veo). "
            "You can create an API key in Google AI Studio."
        )
    return api_key


def _openai_api_key() -> str:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise AuthInvalid("OPENAI_API_KEY is not set. Set it in .env for OpenAI.")
    return api_key


def _google_client(timeout: float):
    from google import genai
    from google.genai import types
    return genai.Client(
        api_key=_google_api_key(),
        http_options=types.HttpOptions(timeout=int(timeout * 1000)),
    )


def _openai_client(timeout: float):
    from openai import OpenAI
    return OpenAI(api_key=_openai_api_key(), timeout=timeout)


def _check_provider(prov: str, env_name: str) -> str:
    prov = prov.lower()
    if prov not in ("openai", "google"):
        raise ValueError(
            f"{env_name} must be 'openai' or 'google'. Got: {prov}. "
            f"Set {env_name} in .env or pass provider=."
        )
    return prov


def _ensure_openai_schema(schema: dict) -> dict:
    """Ensure schema has additionalProperties: false for OpenAI Structured Outputs."""
    if schema.get("type") != "object":
        return schema
    result = dict(schema)
    result.setdefault("additionalProperties", False)
    if "properties" in result:
        result["properties"] = {
            k: _ensure_openai_schema(v) if isinstance(v, dict) else v
            for k, v in result["properties"].items()
        }
        # Strict mode requires every property to be listed as required
        result["required"] = list(result["properties"])
    if "items" in result and isinstance(result["items"], dict):
        result["items"] = _ensure_openai_schema(result["items"])
    return result


def _raise_if_blocked(response: Any) -> None:
    """Raise SafetyFiltered when Gemini refused the prompt or stopped on a safety rule."""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback else None
    if block_reason:
        raise SafetyFiltered(f"prompt blocked: {block_reason}")
    candidates = getattr(response, "candidates", None) or []
    if candidates:
        finish = str(getattr(candidates[0], "finish_reason", "") or "")
        if "SAFETY" in finish.upper() or "PROHIBITED" in finish.upper():
            raise SafetyFiltered(f"output blocked: {finish}")


def generate_text(
    prompt: str,
    provider: str | None = None,
    model: str | None = None,
    temperature: float = 0.7,
    max_output_tokens: int = 2048,
    response_json_schema: dict | None = None,
    json_mode: bool = False,
    image: MediaInput | None = None,
    timeout: float | None = None,
) -> TextCompletion:
    """
    Generate text from a single prompt using Google Gemini or OpenAI.

    Args:
        prompt: Full instruction text.
        provider: "google" or "openai"; if None, use env TEXT_PROVIDER.
        model: Model name; if None, use env TEXT_MODEL_GOOGLE or TEXT_MODEL_OPENAI.
        temperature: Sampling temperature.
        max_output_tokens: Output token cap.
        response_json_schema: Optional JSON schema dict for structured output.
        json_mode: Ask for a JSON object without a schema.
        image: Optional inline image for vision prompts (style / character analysis).
        timeout: Request timeout in seconds (default DEFAULT_TIMEOUT).

    Returns:
        TextCompletion with the reply text and total tokens used.
    """
    prov = _check_provider(provider or config.TEXT_PROVIDER, "TEXT_PROVIDER")
    timeout = timeout or config.DEFAULT_TIMEOUT

    if prov == "openai":
        client = _openai_client(timeout)
        content: Any = prompt
        if image is not None:
            data_url = f"data:{image.mime_type};base64,{base64.b64encode(image.data).decode('ascii')}"
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": data_url}},
            ]
        req: dict[str, Any] = {
            "model": model or config.TEXT_MODEL_OPENAI,
            "messages": [{"role": "user", "content": content}],
            "temperature": temperature,
            "max_completion_tokens": max_output_tokens,
        }
        if response_json_schema is not None:
            openai_schema = _ensure_openai_schema(response_json_schema)
            req["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": openai_schema.get("title", "response"),
                    "strict": True,
                    "schema": openai_schema,
                },
            }
        elif json_mode:
            req["response_format"] = {"type": "json_object"}
        response = client.chat.completions.create(**req)
        choice = response.choices[0]
        if getattr(choice, "finish_reason", None) == "content_filter":
            raise SafetyFiltered("output blocked by content filter")
        text = choice.message.content or ""
        if not text.strip():
            raise UnknownProviderError("OpenAI returned empty text.")
        usage = getattr(response, "usage", None)
        return TextCompletion(
            text=text,
            tokens_used=getattr(usage, "total_tokens", 0) or 0,
        )

    # Google Gemini (google.genai SDK)
    from google.genai import types
    client = _google_client(timeout)
    config_kw: dict[str, Any] = {"temperature": temperature, "max_output_tokens": max_output_tokens}
    if response_json_schema is not None:
        config_kw["response_mime_type"] = "application/json"
        config_kw["response_json_schema"] = response_json_schema
    elif json_mode:
        config_kw["response_mime_type"] = "application/json"
    contents: list[Any] = [prompt]
    if image is not None:
        contents = [types.Part.from_bytes(data=image.data, mime_type=image.mime_type), prompt]
    response = client.models.generate_content(
        model=model or config.TEXT_MODEL_GOOGLE,
        contents=contents,
        config=types.GenerateContentConfig(**config_kw),
    )
    if not response:
        raise UnknownProviderError("Google Gemini returned no response.")
    _raise_if_blocked(response)
    text = getattr(response, "text", None) or ""
    if not text:
        raise UnknownProviderError("Google Gemini returned empty text.")
    usage = getattr(response, "usage_metadata", None)
    return TextCompletion(text=text, tokens_used=getattr(usage, "total_token_count", 0) or 0)


def _openai_image(prompt: str, model_name: str, size: str, reference: MediaInput | None, timeout: float) -> MediaPayload:
    client = _openai_client(timeout)
    if reference is not None:
        ext = reference.mime_type.split("/")[-1]
        resp = client.images.edit(
            model=model_name,
            image=(f"reference.{ext}", reference.data, reference.mime_type),
            prompt=prompt,
            size=size,
        )
    else:
        resp = client.images.generate(model=model_name, prompt=prompt, size=size, n=1)
    b64_data = getattr(resp.data[0], "b64_json", None)
    if not b64_data:
        raise UnknownProviderError("OpenAI image response had no b64_json")
    return MediaPayload(data=base64.b64decode(b64_data), mime_type="image/png")


def _google_image(prompt: str, model_name: str, reference: MediaInput | None, timeout: float) -> MediaPayload:
    from google.genai import types
    client = _google_client(timeout)
    contents: list[Any] = [prompt]
    if reference is not None:
        contents = [types.Part.from_bytes(data=reference.data, mime_type=reference.mime_type), prompt]
    response = client.models.generate_content(model=model_name, contents=contents)
    _raise_if_blocked(response)
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            mime = getattr(inline, "mime_type", "") or ""
            if inline is not None and getattr(inline, "data", None) and mime.startswith("image/"):
                return MediaPayload(data=inline.data, mime_type=mime)
    raise UnknownProviderError("No image found in response. Please try again with a different prompt.")


_OPENAI_SIZES = {"1:1": "1024x1024", "16:9": "1536x1024", "4:3": "1536x1024", "9:16": "1024x1536", "3:4": "1024x1536"}


def generate_image(
    prompt: str,
    aspect_ratio: str = "1:1",
    reference_image: MediaInput | None = None,
    provider: str | None = None,
    model: str | None = None,
    timeout: float | None = None,
) -> MediaPayload:
    """
    Generate an image from a text prompt, optionally seeded by a reference image.

    Args:
        prompt: The built image prompt.
        aspect_ratio: e.g. "1:1", "16:9", "9:16"; appended as a hint for Gemini, mapped to a size for OpenAI.
        reference_image: Optional image for image-to-image style transfer.
        provider: "google" or "openai"; if None, use env IMAGE_PROVIDER.
        model: Model name; if None, use env IMAGE_MODEL_GOOGLE or IMAGE_MODEL_OPENAI.
        timeout: Request timeout in seconds (default IMAGE_TIMEOUT).
    """
    prov = _check_provider(provider or config.IMAGE_PROVIDER, "IMAGE_PROVIDER")
    timeout = timeout or config.IMAGE_TIMEOUT
    if prov == "openai":
        size = _OPENAI_SIZES.get(aspect_ratio, "1024x1024")
        return _openai_image(prompt, model or config.IMAGE_MODEL_OPENAI, size, reference_image, timeout)
    return _google_image(f"{prompt}. Aspect ratio: {aspect_ratio}.", model or config.IMAGE_MODEL_GOOGLE,
                         reference_image, timeout)


def _download_video(uri: str, api_key: str, timeout: float) -> bytes:
    resp = requests.get(uri, headers={"x-goog-api-key": api_key}, timeout=timeout, allow_redirects=True)
    resp.raise_for_status()
    return resp.content


def _video_from_operation(operation: Any, api_key: str, timeout: float) -> MediaPayload:
    error = getattr(operation, "error", None)
    if error:
        raise UnknownProviderError(f"Veo generation error: {error}")
    response = getattr(operation, "response", None) or getattr(operation, "result", None)
    if getattr(response, "rai_media_filtered_count", 0):
        reasons = getattr(response, "rai_media_filtered_reasons", None) or []
        raise SafetyFiltered("; ".join(reasons) or "video filtered by safety rules")
    videos = getattr(response, "generated_videos", None) or []
    if not videos or getattr(videos[0], "video", None) is None:
        raise UnknownProviderError("No video generated. Please try again with a different prompt.")
    video = videos[0].video
    mime_type = getattr(video, "mime_type", None) or "video/mp4"
    inline = getattr(video, "video_bytes", None)
    uri = getattr(video, "uri", None)
    if inline:
        return MediaPayload(data=inline, mime_type=mime_type, uri=uri)
    if not uri:
        raise UnknownProviderError("Video file not available.")
    _log("Downloading video...")
    return MediaPayload(data=_download_video(uri, api_key, timeout), mime_type=mime_type, uri=uri)


def poll_operation(
    operation: Any,
    refresh: Callable[[Any], Any],
    poll_interval: float | None = None,
    max_polls: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    on_progress: Optional[Callable[[str], None]] = None,
) -> Any:
    """
    Poll a long-running operation until operation.done, at most max_polls times.

    Raises ProviderTimeout when the bound is exhausted, even if the provider might
    still finish later.
    """
    poll_interval = config.VIDEO_POLL_INTERVAL if poll_interval is None else poll_interval
    max_polls = config.VIDEO_MAX_POLLS if max_polls is None else max_polls
    polls = 0
    while not getattr(operation, "done", False) and polls < max_polls:
        polls += 1
        sleep(poll_interval)
        operation = refresh(operation)
        message = f"Generating video... ({polls * poll_interval:.0f}s elapsed)"
        _log(message, verbose_only=True)
        if on_progress:
            on_progress(message)
    if not getattr(operation, "done", False):
        raise ProviderTimeout(f"video job still running after {polls * poll_interval:.0f}s")
    return operation


def generate_video(
    prompt: str,
    reference_image: MediaInput | None = None,
    previous_video: MediaInput | None = None,
    duration_seconds: int | None = None,
    aspect_ratio: str = "9:16",
    negative_prompt: str = NEGATIVE_VIDEO_PROMPT,
    model: str | None = None,
    timeout: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    on_progress: Optional[Callable[[str], None]] = None,
) -> MediaPayload:
    """
    Generate a video with Veo: from scratch, image-seeded, or continuing previous_video.

    The job is asynchronous: the initial call returns an operation handle that is
    polled every VIDEO_POLL_INTERVAL seconds, at most VIDEO_MAX_POLLS times. The
    finished video is fetched from the returned URI unless it came back inline.
    """
    from google.genai import types
    timeout = timeout or config.VIDEO_TIMEOUT
    client = _google_client(timeout)
    api_key = _google_api_key()

    video_kw: dict[str, Any] = {
        "aspect_ratio": aspect_ratio,
        "negative_prompt": negative_prompt or None,
        "number_of_videos": 1,
    }
    if duration_seconds and previous_video is None:
        video_kw["duration_seconds"] = duration_seconds
    kwargs: dict[str, Any] = {
        "model": model or config.VIDEO_MODEL_GOOGLE,
        "prompt": prompt,
        "config": types.GenerateVideosConfig(**video_kw),
    }
    if previous_video is not None:
        kwargs["video"] = types.Video(video_bytes=previous_video.data, mime_type=previous_video.mime_type)
    elif reference_image is not None:
        kwargs["image"] = types.Image(image_bytes=reference_image.data, mime_type=reference_image.mime_type)
    mode = "extend" if previous_video is not None else ("image-to-video" if reference_image is not None else "text-to-video")
    _log(f"Starting {mode} job ({kwargs['model']})")
    if on_progress:
        on_progress("Starting video generation...")
    operation = client.models.generate_videos(**kwargs)
    operation = poll_operation(
        operation,
        refresh=lambda op: client.operations.get(op),
        sleep=sleep,
        on_progress=on_progress,
    )
    return _video_from_operation(operation, api_key, timeout)


def extend_video(
    prompt: str,
    previous_video: MediaInput,
    aspect_ratio: str = "9:16",
    model: str | None = None,
    timeout: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    on_progress: Optional[Callable[[str], None]] = None,
) -> MediaPayload:
    """Continue previous_video with a new prompt; the provider keeps its last frames as the starting point."""
    return generate_video(
        prompt,
        previous_video=previous_video,
        aspect_ratio=aspect_ratio,
        model=model,
        timeout=timeout,
        sleep=sleep,
        on_progress=on_progress,
    )
