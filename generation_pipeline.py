"""
Unified generation pipeline.

Every operation follows the same sequence:

    credit gate -> prompt -> ledger.create -> with_retry(client call) -> unwrap
        -> parse (text operations) -> ledger.complete

Once a record exists, any exception marks it failed (with the error's message)
and the original exception is re-raised. Insufficient credits stop the operation
before a record is created or a provider is called.
"""
import io
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from PIL import Image, UnidentifiedImageError

import config
import prompt_builders
import response_parser
from config import Config
from errors import LedgerError, UnknownProviderError
from generation_client import GenerationClient, GenerationResult
from ledger import GenerationLedger
from pricing import check_balance, cost, story_cost
from retry_policy import with_retry
from scene_schemas import IMAGE_SCENE_SCHEMA, SCENE_SCHEMA, STORY_SCHEMA
from scene_types import (
    STORY_DURATION,
    GenerationOutput,
    GenerationRecord,
    ImageSceneConfig,
    MediaInput,
    ParsedStyle,
    SceneConfig,
    normalize_duration,
)


def _log(msg: str, verbose_only: bool = False) -> None:
    if verbose_only and not config.DEBUG:
        return
    print(f"[PIPELINE] {msg}")


@dataclass(frozen=True)
class PipelineResult:
    """value is the parsed object (text operations) or media bytes (image/video operations)."""

    value: Any
    record: GenerationRecord
    cost_mxn: float
    mime_type: str = ""
    text: str = ""
    uri: Optional[str] = None


@dataclass(frozen=True)
class _Produced:
    value: Any
    result: GenerationResult
    text: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    duration_seconds: Optional[float] = None


def image_dimensions(data: bytes) -> tuple[Optional[int], Optional[int]]:
    """(width, height) of an encoded image, or (None, None) when Pillow cannot read it."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError):
        return None, None


class GenerationPipeline:
    def __init__(
        self,
        client: GenerationClient,
        ledger: GenerationLedger,
        balance_source: Any,
        observer: Optional[Callable[[response_parser.TraceEvent], None]] = None,
        retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.ledger = ledger
        self.balance_source = balance_source
        self.observer = observer
        self.retries = retries
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.settings = Config()

    # --- shared sequence ---

    def _call(self, label: str, call: Callable[[], GenerationResult]) -> GenerationResult:
        return with_retry(call, retries=self.retries, delay=self.retry_delay, label=label, sleep=self.sleep)

    def _run(
        self,
        operation: str,
        estimated_cost: float,
        meta: dict,
        produce: Callable[[], _Produced],
        billed_units: int = 1,
    ) -> PipelineResult:
        check_balance(self.balance_source, estimated_cost)
        record = self.ledger.create(meta, operation)
        started = time.monotonic()
        try:
            produced = produce()
            result = produced.result
            output = GenerationOutput(
                output_url=result.uri or f"generated://{record.id}",
                output_key=f"gen/{record.id}",
                mime_type=result.mime_type or "application/octet-stream",
                width=produced.width,
                height=produced.height,
                duration_seconds=produced.duration_seconds,
                tokens_used=result.tokens_used or None,
                generation_time_seconds=int(round(time.monotonic() - started)),
                billed_units=billed_units,
            )
            cost_mxn = self.ledger.realized_cost(record.id, output)
            completed = self.ledger.complete(record.id, output)
        except Exception as e:
            self._mark_failed(record.id, str(e) or type(e).__name__)
            raise
        _log(f"{operation} {record.id} completed in {output.generation_time_seconds}s", verbose_only=True)
        return PipelineResult(
            value=produced.value,
            record=completed,
            cost_mxn=cost_mxn,
            mime_type=output.mime_type,
            text=produced.text,
            uri=result.uri,
        )

    def _mark_failed(self, generation_id: str, message: str) -> None:
        try:
            self.ledger.fail(generation_id, message)
        except LedgerError as fail_error:
            # The caller still gets the original error
            _log(f"could not mark {generation_id} failed: {fail_error}")

    def _text(self, label: str, prompt: str, image: Optional[MediaInput] = None,
              schema: Optional[dict] = None) -> GenerationResult:
        result = self._call(label, lambda: self.client.generate_text(prompt, image=image, json_schema=schema))
        payload = result.unwrap()
        if payload is None or (isinstance(payload, str) and not payload.strip()):
            raise UnknownProviderError("Empty response from AI")
        return result

    @staticmethod
    def _meta(title: str, generation_type: str, prompt: str, **extra) -> dict:
        meta = {"title": title, "generationType": generation_type, "prompt": prompt}
        meta.update(extra)
        return meta

    # --- text operations ---

    def extract_style(self, image: MediaInput, user_guidance: Optional[str] = None,
                      title: str = "Style analysis") -> PipelineResult:
        """Analyze a reference image into a ParsedStyle. result.text holds the full markdown analysis."""
        prompt = prompt_builders.build_style_extraction_prompt(user_guidance)

        def produce():
            result = self._text("style", prompt, image=image)
            analysis = str(result.payload)
            return _Produced(response_parser.parse_style_analysis(analysis), result, text=analysis)

        return self._run("style", cost("style"), self._meta(title, "style", prompt), produce)

    def analyze_character(self, image: MediaInput, title: str = "Character analysis") -> PipelineResult:
        """Describe the subject of a character image. value is the description string."""
        prompt = prompt_builders.build_character_analysis_prompt()

        def produce():
            result = self._text("character", prompt, image=image)
            description = str(result.payload).strip()
            return _Produced(description, result, text=description)

        return self._run("style", cost("style"), self._meta(title, "text", prompt), produce)

    def generate_scene_config(self, idea: str, title: str = "Scene") -> PipelineResult:
        prompt = prompt_builders.build_scene_builder_prompt(idea)

        def produce():
            result = self._text("scene", prompt, schema=SCENE_SCHEMA)
            scene = response_parser.parse_scene(result.payload, observer=self.observer)
            return _Produced(scene, result, text=result.payload if isinstance(result.payload, str) else "")

        return self._run("scene_builder", cost("scene_builder"),
                         self._meta(title, "text", idea, generationParams={"mode": "scene"}), produce)

    def generate_image_scene_config(self, idea: str, title: str = "Image scene") -> PipelineResult:
        prompt = prompt_builders.build_image_scene_builder_prompt(idea)

        def produce():
            result = self._text("image scene", prompt, schema=IMAGE_SCENE_SCHEMA)
            scene = response_parser.parse_image_scene(result.payload, observer=self.observer)
            return _Produced(scene, result, text=result.payload if isinstance(result.payload, str) else "")

        return self._run("scene_builder", cost("scene_builder"),
                         self._meta(title, "text", idea, generationParams={"mode": "image_scene"}), produce)

    def generate_story_config(self, idea: str, segment_count: int, title: str = "Story") -> PipelineResult:
        """Plan a story. segment_count is clamped to the configured story limits before pricing."""
        count = self.settings.clamp_segment_count(segment_count)
        prompt = prompt_builders.build_story_builder_prompt(idea, count)

        def produce():
            result = self._text("story", prompt, schema=STORY_SCHEMA)
            story = response_parser.parse_story(result.payload, observer=self.observer)
            return _Produced(story, result, text=result.payload if isinstance(result.payload, str) else "")

        meta = self._meta(title, "text", idea, generationParams={"mode": "story", "segmentCount": count})
        return self._run("story_segment", story_cost(count), meta, produce, billed_units=count)

    # --- media operations ---

    def _image(self, label: str, prompt: str, reference_image: Optional[MediaInput], aspect_ratio: str) -> _Produced:
        result = self._call(label, lambda: self.client.generate_image(
            prompt, reference_image=reference_image, aspect_ratio=aspect_ratio))
        data = result.unwrap()
        width, height = image_dimensions(data)
        return _Produced(data, result, width=width, height=height)

    def generate_image(
        self,
        scene: SceneConfig | ImageSceneConfig,
        style: Optional[ParsedStyle] = None,
        character_description: str = "",
        reference_image: Optional[MediaInput] = None,
        aspect_ratio: Optional[str] = None,
        title: str = "Image",
        style_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> PipelineResult:
        aspect_ratio = aspect_ratio or self.settings.image_aspect_ratio
        prompt = prompt_builders.build_image_prompt(scene, style, character_description)
        meta = self._meta(title, "image", prompt, styleId=style_id, characterId=character_id,
                          sceneConfig=scene.to_dict(), generationParams={"aspectRatio": aspect_ratio})
        return self._run("image", cost("image"), meta,
                         lambda: self._image("image", prompt, reference_image, aspect_ratio))

    def generate_character_image(
        self,
        character_description: str,
        style: ParsedStyle,
        reference_image: Optional[MediaInput] = None,
        aspect_ratio: Optional[str] = None,
        title: str = "Character",
        style_id: Optional[str] = None,
    ) -> PipelineResult:
        aspect_ratio = aspect_ratio or self.settings.image_aspect_ratio
        prompt = prompt_builders.build_character_image_prompt(character_description, style, aspect_ratio)
        meta = self._meta(title, "image", prompt, styleId=style_id,
                          generationParams={"aspectRatio": aspect_ratio, "mode": "character"})
        return self._run("character", cost("character"), meta,
                         lambda: self._image("character", prompt, reference_image, aspect_ratio))

    def generate_video(
        self,
        scene: SceneConfig,
        style: Optional[ParsedStyle] = None,
        character_description: str = "",
        reference_image: Optional[MediaInput] = None,
        duration_seconds: Optional[int] = None,
        title: str = "Video",
        style_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> PipelineResult:
        """Generate a video from scratch, or image-seeded when reference_image is given."""
        duration = normalize_duration(duration_seconds or scene.suggested_duration)
        prompt = prompt_builders.build_video_prompt(scene, style, character_description, duration)
        aspect_ratio = self.settings.video_aspect_ratio
        meta = self._meta(title, "video", prompt, styleId=style_id, characterId=character_id,
                          sceneConfig=scene.to_dict(),
                          generationParams={"durationSeconds": duration, "aspectRatio": aspect_ratio,
                                            "mode": "image-to-video" if reference_image else "text-to-video"})

        def produce():
            result = self._call("video", lambda: self.client.generate_video(
                prompt, reference_image=reference_image, duration_seconds=duration, aspect_ratio=aspect_ratio))
            return _Produced(result.unwrap(), result, duration_seconds=duration)

        return self._run("video", cost("video", duration), meta, produce)

    def extend_video(
        self,
        scene: SceneConfig,
        previous_video: MediaInput,
        style: Optional[ParsedStyle] = None,
        character_description: str = "",
        duration_seconds: int = STORY_DURATION,
        title: str = "Video extension",
        style_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> PipelineResult:
        """Continue previous_video with the next scene."""
        duration = normalize_duration(duration_seconds)
        prompt = prompt_builders.build_video_prompt(scene, style, character_description, duration)
        aspect_ratio = self.settings.video_aspect_ratio
        meta = self._meta(title, "video", prompt, styleId=style_id, characterId=character_id,
                          sceneConfig=scene.to_dict(),
                          generationParams={"durationSeconds": duration, "aspectRatio": aspect_ratio,
                                            "mode": "extend"})

        def produce():
            result = self._call("extend", lambda: self.client.extend_video(
                prompt, previous_video, aspect_ratio=aspect_ratio))
            return _Produced(result.unwrap(), result, duration_seconds=duration)

        return self._run("video", cost("video", duration), meta, produce)
