"""
Recovers structured scenes and stories from language-model text.

Model output is unreliable (code fences, prose around the JSON, control
characters, truncated objects), so parsing runs an ordered list of strategies
and stops at the first one that yields a value with the expected shape:

    1. direct          - decode the trimmed text
    2. strip_fences    - remove ``` / ```json / ```javascript markers, then decode
    3. brace_regex     - decode each greedy {...} match in turn
    4. brace_span      - decode the span between the first '{' and the last '}'
    5. control_chars   - drop control characters, collapse whitespace, then decode
    6. array_shell     - (story only) wrap a bare [...] array in a story shell
    7. manual_fields   - (scenes only) pull each known "key": "value" pair with a regex

Each strategy is a pure `text -> value | None` function, so a strategy list can
be swapped or spied on. Whatever a strategy returns is then checked for
non-empty mandatory fields; failing that is a ParseFailure, never a guess.
Duration snapping happens after that check (see scene_types.normalize_duration).
"""
import json
import re
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Optional

import config
from errors import ParseFailure
from scene_schemas import (
    OPTIONAL_IMAGE_SCENE_FIELDS,
    OPTIONAL_SCENE_FIELDS,
    REQUIRED_IMAGE_SCENE_FIELDS,
    REQUIRED_SCENE_FIELDS,
)
from scene_types import ImageSceneConfig, ParsedStyle, SceneConfig, Story, StorySegment

SCENE = "scene"
IMAGE_SCENE = "image_scene"
STORY = "story"

_FIELDS = {
    SCENE: (REQUIRED_SCENE_FIELDS, OPTIONAL_SCENE_FIELDS),
    IMAGE_SCENE: (REQUIRED_IMAGE_SCENE_FIELDS, OPTIONAL_IMAGE_SCENE_FIELDS),
}

STORY_SHELL_TITLE = "Generated Story"
STORY_SHELL_DESCRIPTION = "AI-generated story"

Strategy = Callable[[str], Optional[Any]]


@dataclass(frozen=True)
class TraceEvent:
    """One parser diagnostic: strategy_attempted / strategy_succeeded / strategy_failed / parse_succeeded / parse_failed."""

    event: str
    context: str
    strategy: str = ""
    elapsed_ms: float = 0.0
    detail: str = ""


def _log(msg: str, verbose_only: bool = False) -> None:
    """Log with [PARSER] prefix. Use verbose_only for extra debug output."""
    if verbose_only and not config.DEBUG:
        return
    print(f"[PARSER] {msg}")


def print_trace(event: TraceEvent) -> None:
    """Default observer: failures always, everything else only with DEBUG=1."""
    if event.event == "parse_failed":
        _log(f"{event.context}: all strategies failed after {event.elapsed_ms:.1f}ms ({event.detail})")
        return
    label = f"{event.context}: {event.event}"
    if event.strategy:
        label += f" [{event.strategy}]"
    if event.elapsed_ms:
        label += f" {event.elapsed_ms:.1f}ms"
    _log(label, verbose_only=True)


def _decode(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except ValueError:
        return None


def strip_code_fences(text: str) -> str:
    """Remove markdown code block markers from a model response."""
    cleaned = re.sub(r"```json\s*", "", text, flags=re.IGNORECASE)
    cleaned = re.sub(r"```javascript\s*", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"```\s*", "", cleaned)
    return cleaned.strip()


# --- Strategies ---

def decode_direct(text: str) -> Optional[Any]:
    return _decode(text.strip())


def decode_without_fences(text: str) -> Optional[Any]:
    return _decode(strip_code_fences(text))


def decode_brace_matches(text: str) -> Optional[Any]:
    for candidate in re.findall(r"\{[\s\S]*\}", strip_code_fences(text)):
        value = _decode(candidate)
        if value is not None:
            return value
    return None


def decode_brace_span(text: str) -> Optional[Any]:
    cleaned = strip_code_fences(text)
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first == -1 or last <= first:
        return None
    return _decode(cleaned[first:last + 1])


def decode_without_control_chars(text: str) -> Optional[Any]:
    cleaned = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", strip_code_fences(text))
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return _decode(cleaned)


def decode_array_as_story(text: str) -> Optional[Any]:
    match = re.search(r"\[[\s\S]*\]", strip_code_fences(text))
    if not match:
        return None
    value = _decode(match.group(0))
    if not isinstance(value, list):
        return None
    return {
        "storyTitle": STORY_SHELL_TITLE,
        "storyDescription": STORY_SHELL_DESCRIPTION,
        "segments": value,
    }


def _extract_string_field(text: str, key: str) -> Optional[str]:
    match = re.search(rf'"{re.escape(key)}"\s*:\s*"((?:[^"\\]|\\.)*)"', text)
    if not match:
        return None
    raw = match.group(1)
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return raw


def extract_fields_manually(text: str, required: list[str], optional: list[str]) -> Optional[dict]:
    """Last resort: regex each known key out of the text. None unless every required key is found non-empty."""
    extracted: dict[str, Any] = {}
    for key in list(required) + list(optional):
        value = _extract_string_field(text, key)
        if value is not None:
            extracted[key] = value
    duration = re.search(r'"suggestedDuration"\s*:\s*(\d+)', text)
    if duration:
        extracted["suggestedDuration"] = int(duration.group(1))
    if all(str(extracted.get(key, "")).strip() for key in required):
        return extracted
    return None


def build_strategies(context: str) -> list[tuple[str, Strategy]]:
    """Ordered (name, strategy) pairs for a parse context."""
    strategies: list[tuple[str, Strategy]] = [
        ("direct", decode_direct),
        ("strip_fences", decode_without_fences),
        ("brace_regex", decode_brace_matches),
        ("brace_span", decode_brace_span),
        ("control_chars", decode_without_control_chars),
    ]
    if context == STORY:
        strategies.append(("array_shell", decode_array_as_story))
    else:
        required, optional = _FIELDS[context]
        strategies.append(("manual_fields", partial(extract_fields_manually, required=required, optional=optional)))
    return strategies


# --- Validation ---

def _has_shape(value: Any, context: str) -> bool:
    if not isinstance(value, dict):
        return False
    if context == STORY:
        return isinstance(value.get("segments"), list)
    required, _ = _FIELDS[context]
    return all(key in value for key in required)


def _filled(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _missing_fields(value: dict, context: str) -> list[str]:
    if context == STORY:
        segments = value.get("segments") or []
        if not segments:
            return ["segments"]
        missing = []
        for idx, seg in enumerate(segments, start=1):
            if not isinstance(seg, dict):
                missing.append(f"segments[{idx}]")
                continue
            missing.extend(f"segments[{idx}].{key}" for key in REQUIRED_SCENE_FIELDS if not _filled(seg.get(key)))
        return missing
    required, _ = _FIELDS[context]
    return [key for key in required if not _filled(value.get(key))]


def _preview(text: str, limit: int = 200) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def parse_response(
    raw: Any,
    context: str = SCENE,
    observer: Optional[Callable[[TraceEvent], None]] = None,
    strategies: Optional[list[tuple[str, Strategy]]] = None,
) -> dict:
    """
    Run the strategy cascade over a model response and return the validated dict.

    Args:
        raw: Response text, or a dict when the transport already decoded the JSON.
        context: SCENE, IMAGE_SCENE or STORY.
        observer: Receives a TraceEvent per attempt and for the final outcome.
        strategies: Override the default strategy list (tests spy on it).

    Raises:
        ParseFailure: no strategy produced a value, or the value lacks mandatory content.
    """
    if context not in (SCENE, IMAGE_SCENE, STORY):
        raise ValueError(f"Unknown parse context: {context}")
    emit = observer or print_trace
    started = time.perf_counter()

    def elapsed() -> float:
        return (time.perf_counter() - started) * 1000

    if isinstance(raw, dict):
        if _has_shape(raw, context):
            return _validated(raw, context, "preparsed", emit, elapsed(), raw_preview=_preview(json.dumps(raw)))
        raw = json.dumps(raw)
    if not isinstance(raw, str):
        raise ParseFailure(f"Unexpected response type: {type(raw).__name__}", context=context)
    if not raw.strip():
        emit(TraceEvent("parse_failed", context, detail="empty response"))
        raise ParseFailure("Empty response from AI", context=context)

    for name, strategy in strategies if strategies is not None else build_strategies(context):
        emit(TraceEvent("strategy_attempted", context, strategy=name))
        value = strategy(raw)
        if value is not None and _has_shape(value, context):
            emit(TraceEvent("strategy_succeeded", context, strategy=name, elapsed_ms=elapsed()))
            return _validated(value, context, name, emit, elapsed(), raw_preview=_preview(raw))
        emit(TraceEvent("strategy_failed", context, strategy=name, elapsed_ms=elapsed()))

    emit(TraceEvent("parse_failed", context, elapsed_ms=elapsed(), detail=f"{len(raw)} chars"))
    raise ParseFailure(
        "Could not parse AI response. The AI returned an unexpected format. "
        "Please try again or try rephrasing your request.",
        context=context,
        preview=_preview(raw),
    )


def _validated(value: dict, context: str, strategy: str, emit, elapsed_ms: float, raw_preview: str) -> dict:
    missing = _missing_fields(value, context)
    if missing:
        emit(TraceEvent("parse_failed", context, strategy=strategy, elapsed_ms=elapsed_ms,
                        detail=f"missing {', '.join(missing)}"))
        raise ParseFailure(
            f"AI response missing required fields ({', '.join(missing)})",
            context=context,
            preview=raw_preview,
        )
    emit(TraceEvent("parse_succeeded", context, strategy=strategy, elapsed_ms=elapsed_ms))
    return value


def parse_scene(raw: Any, observer=None, strategies=None) -> SceneConfig:
    """Parse a video scene; suggestedDuration is snapped onto the valid set afterwards."""
    return SceneConfig.from_dict(parse_response(raw, SCENE, observer, strategies))


def parse_image_scene(raw: Any, observer=None, strategies=None) -> ImageSceneConfig:
    return ImageSceneConfig.from_dict(parse_response(raw, IMAGE_SCENE, observer, strategies))


def parse_story(raw: Any, observer=None, strategies=None) -> Story:
    """Parse a story; segments are renumbered 1..N and all use the story duration."""
    value = parse_response(raw, STORY, observer, strategies)
    segments = tuple(StorySegment.from_dict(seg, position) for position, seg in enumerate(value["segments"], start=1))
    return Story(
        title=str(value.get("storyTitle") or "").strip() or "Untitled Story",
        description=str(value.get("storyDescription") or "").strip(),
        segments=segments,
    )


def parse_style_analysis(analysis: str) -> ParsedStyle:
    """Split a '## Section' style analysis into ParsedStyle attributes."""
    sections: dict[str, str] = {}
    for match in re.finditer(r"## ([^\n]+)\n([\s\S]*?)(?=\n## |\Z)", analysis):
        sections[match.group(1).strip().lower()] = match.group(2).strip()

    keywords = tuple(k.strip() for k in sections.get("style keywords", "").split(",") if k.strip())
    return ParsedStyle(
        overview=sections.get("visual style overview", ""),
        color_palette=sections.get("color palette", ""),
        artistic_style=sections.get("artistic style", ""),
        lighting=sections.get("lighting & atmosphere") or sections.get("lighting", ""),
        composition=sections.get("composition & framing") or sections.get("composition", ""),
        texture=sections.get("texture & detail level") or sections.get("texture", ""),
        keywords=keywords or ("stylized", "artistic"),
    )
