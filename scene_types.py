"""
Data model shared by the parser, prompt builders, pipeline and story chain.
Provider JSON uses the camelCase/Spanish keys the scene builder prompts ask for;
from_dict/to_dict translate between those and the attribute names here.
"""
from dataclasses import dataclass, field, fields
from typing import Any, Optional

VALID_DURATIONS = (2, 4, 6, 8)
DEFAULT_DURATION = 4
STORY_DURATION = 8

TERMINAL_STATUSES = ("completed", "failed")


def normalize_duration(value: Any) -> int:
    """
    Snap a suggested duration onto VALID_DURATIONS.

    Missing, non-numeric or zero values become DEFAULT_DURATION. Anything else maps
    to the member with the smallest absolute difference; ties keep the lower member.
    """
    try:
        duration = float(value)
    except (TypeError, ValueError):
        return DEFAULT_DURATION
    if not duration or duration != duration:  # 0 or NaN
        return DEFAULT_DURATION
    best = VALID_DURATIONS[0]
    for candidate in VALID_DURATIONS[1:]:
        if abs(candidate - duration) < abs(best - duration):
            best = candidate
    return best


def _text(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    return str(value).strip()


# attribute name -> provider JSON key for the optional hyper-realism fields
_REALISM_KEYS = {
    "condiciones_fisicas": "condicionesFisicas",
    "defectos_tecnicos": "defectosTecnicos",
    "contexto_invisible": "contextoInvisible",
}


@dataclass(frozen=True)
class SceneConfig:
    """One planned video shot."""

    escena: str
    accion: str
    dialogo: str = ""
    fondo: str = ""
    voice_style: str = ""
    movimiento: str = ""
    suggested_duration: int = DEFAULT_DURATION
    condiciones_fisicas: str = ""
    defectos_tecnicos: str = ""
    contexto_invisible: str = ""

    _KEYS = {
        "escena": "escena",
        "accion": "accion",
        "dialogo": "dialogo",
        "fondo": "fondo",
        "voice_style": "voiceStyle",
        "movimiento": "movimiento",
        **_REALISM_KEYS,
    }

    @classmethod
    def from_dict(cls, data: dict, duration: Optional[int] = None) -> "SceneConfig":
        values = {attr: _text(data, key) for attr, key in cls._KEYS.items()}
        if duration is None:
            duration = normalize_duration(data.get("suggestedDuration"))
        return cls(suggested_duration=duration, **values)

    def to_dict(self) -> dict:
        out = {key: getattr(self, attr) for attr, key in self._KEYS.items() if getattr(self, attr)}
        out["suggestedDuration"] = self.suggested_duration
        return out


@dataclass(frozen=True)
class ImageSceneConfig:
    """One planned still image (no dialogue, no duration)."""

    escena: str
    accion: str
    lighting: str
    camera: str
    fondo: str = ""
    condiciones_fisicas: str = ""
    defectos_tecnicos: str = ""
    contexto_invisible: str = ""

    _KEYS = {
        "escena": "escena",
        "accion": "accion",
        "lighting": "lighting",
        "camera": "camera",
        "fondo": "fondo",
        **_REALISM_KEYS,
    }

    @classmethod
    def from_dict(cls, data: dict) -> "ImageSceneConfig":
        return cls(**{attr: _text(data, key) for attr, key in cls._KEYS.items()})

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for attr, key in self._KEYS.items() if getattr(self, attr)}


@dataclass(frozen=True)
class StorySegment:
    segment_number: int
    title: str
    scene: SceneConfig

    @classmethod
    def from_dict(cls, data: dict, position: int) -> "StorySegment":
        """position is the 1-based array index; it always wins over the model's segmentNumber."""
        title = _text(data, "title") or f"Segment {position}"
        return cls(
            segment_number=position,
            title=title,
            scene=SceneConfig.from_dict(data, duration=STORY_DURATION),
        )

    def to_dict(self) -> dict:
        return {"segmentNumber": self.segment_number, "title": self.title, **self.scene.to_dict()}


@dataclass(frozen=True)
class Story:
    title: str
    description: str
    segments: tuple[StorySegment, ...]

    def to_dict(self) -> dict:
        return {
            "storyTitle": self.title,
            "storyDescription": self.description,
            "segments": [s.to_dict() for s in self.segments],
        }


@dataclass(frozen=True)
class ParsedStyle:
    """Visual style attributes recovered from a style analysis."""

    overview: str = ""
    color_palette: str = ""
    artistic_style: str = ""
    lighting: str = ""
    composition: str = ""
    texture: str = ""
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class MediaInput:
    """Raw bytes of an input image or video, with its MIME type."""

    data: bytes
    mime_type: str


@dataclass(frozen=True)
class CreditBalance:
    balance: float
    currency: str = "MXN"

    @classmethod
    def from_dict(cls, data: dict) -> "CreditBalance":
        return cls(balance=float(data.get("balance") or 0), currency=data.get("currency") or "MXN")


@dataclass(frozen=True)
class GenerationOutput:
    """What a finished generation hands to the ledger."""

    output_url: str
    output_key: str
    mime_type: str
    width: Optional[int] = None
    height: Optional[int] = None
    duration_seconds: Optional[float] = None
    tokens_used: Optional[int] = None
    generation_time_seconds: int = 0
    billed_units: int = 1

    def to_payload(self, cost_mxn: float) -> dict:
        payload = {
            "outputUrl": self.output_url,
            "outputKey": self.output_key,
            "mimeType": self.mime_type,
            "width": self.width,
            "height": self.height,
            "durationSeconds": self.duration_seconds,
            "costMxn": cost_mxn,
            "generationTimeSeconds": self.generation_time_seconds,
            "tokensUsed": self.tokens_used,
        }
        return {k: v for k, v in payload.items() if v is not None}


@dataclass(frozen=True)
class GenerationRecord:
    """Ledger entry for one billable external call. Immutable once completed or failed."""

    id: str
    generation_type: str
    status: str
    prompt: str = ""
    title: str = ""
    style_id: Optional[str] = None
    character_id: Optional[str] = None
    scene_config: Optional[dict] = None
    generation_params: Optional[dict] = None
    output_url: Optional[str] = None
    output_key: Optional[str] = None
    mime_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration_seconds: Optional[float] = None
    cost_mxn: Optional[float] = None
    tokens_used: Optional[int] = None
    generation_time_seconds: Optional[int] = None
    error_message: Optional[str] = None

    _KEYS = {
        "generation_type": "generationType",
        "style_id": "styleId",
        "character_id": "characterId",
        "scene_config": "sceneConfig",
        "generation_params": "generationParams",
        "output_url": "outputUrl",
        "output_key": "outputKey",
        "mime_type": "mimeType",
        "duration_seconds": "durationSeconds",
        "cost_mxn": "costMxn",
        "tokens_used": "tokensUsed",
        "generation_time_seconds": "generationTimeSeconds",
        "error_message": "errorMessage",
    }

    @classmethod
    def from_dict(cls, data: dict) -> "GenerationRecord":
        values = {}
        for f in fields(cls):
            key = cls._KEYS.get(f.name, f.name)
            if key in data:
                values[f.name] = data[key]
        values.setdefault("status", "pending")
        values.setdefault("generation_type", "text")
        values["id"] = str(data["id"])
        return cls(**values)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class SegmentOutput:
    segment_number: int
    title: str
    media: bytes
    mime_type: str
    cost_mxn: float
    was_extended: bool
    record_id: Optional[str] = None


@dataclass(frozen=True)
class StoryChainResult:
    """Ordered per-segment outputs of a story chain."""

    segments: tuple[SegmentOutput, ...] = field(default_factory=tuple)

    @property
    def total_cost(self) -> float:
        return round(sum(s.cost_mxn for s in self.segments), 2)

    def with_segment(self, output: SegmentOutput) -> "StoryChainResult":
        return StoryChainResult(segments=self.segments + (output,))
