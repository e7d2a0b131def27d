"""
JSON schemas for scene/story planning.
Pass these to llm_utils.generate_text(response_json_schema=...) for structured output,
and the REQUIRED_* lists to response_parser for field-presence validation.
"""

from scene_types import VALID_DURATIONS

REQUIRED_SCENE_FIELDS = ["escena", "accion", "dialogo"]
REQUIRED_IMAGE_SCENE_FIELDS = ["escena", "accion", "lighting", "camera"]
REALISM_FIELDS = ["condicionesFisicas", "defectosTecnicos", "contextoInvisible"]
OPTIONAL_SCENE_FIELDS = ["fondo", "voiceStyle", "movimiento"] + REALISM_FIELDS
OPTIONAL_IMAGE_SCENE_FIELDS = ["fondo"] + REALISM_FIELDS

_STRING = {"type": "string"}

_REALISM_PROPERTIES = {
    "condicionesFisicas": {"type": "string", "description": "Lighting physics, atmospheric conditions, spatial reality"},
    "defectosTecnicos": {"type": "string", "description": "Technical imperfections (compression, sensor artifacts, optical flaws)"},
    "contextoInvisible": {"type": "string", "description": "What happens outside frame that affects what we see"},
}

_SCENE_PROPERTIES = {
    "escena": {"type": "string", "description": "Detailed scene setting with physical conditions and imperfections"},
    "fondo": {"type": "string", "description": "Background elements with their physical state"},
    "accion": {"type": "string", "description": "Character action captured at an imperfect moment"},
    "dialogo": {"type": "string", "description": "Natural dialogue, 1-3 sentences"},
    "voiceStyle": {"type": "string", "description": "Voice delivery style"},
    "movimiento": {"type": "string", "description": "Camera movement"},
    **_REALISM_PROPERTIES,
    "suggestedDuration": {"type": "integer", "enum": list(VALID_DURATIONS)},
}

# --- Video scene (one shot with dialogue) ---
SCENE_SCHEMA = {
    "type": "object",
    "title": "video_scene",
    "properties": _SCENE_PROPERTIES,
    "required": REQUIRED_SCENE_FIELDS + ["suggestedDuration"],
}

# --- Image scene (still image, no dialogue) ---
IMAGE_SCENE_SCHEMA = {
    "type": "object",
    "title": "image_scene",
    "properties": {
        "escena": {"type": "string", "description": "Detailed environment description, atmosphere, and mood"},
        "fondo": {"type": "string", "description": "Specific background elements, depth, and context"},
        "accion": {"type": "string", "description": "Precise character pose, expression, and action"},
        "lighting": {"type": "string", "description": "Lighting setup and color temperature"},
        "camera": {"type": "string", "description": "Camera gear, lens (mm), aperture (f-stop), and angle"},
        **_REALISM_PROPERTIES,
    },
    "required": REQUIRED_IMAGE_SCENE_FIELDS,
}

# --- Story (ordered segments, each a video scene) ---
STORY_SCHEMA = {
    "type": "object",
    "title": "story",
    "properties": {
        "storyTitle": _STRING,
        "storyDescription": _STRING,
        "segments": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {
                    "segmentNumber": {"type": "integer"},
                    "title": _STRING,
                    **_SCENE_PROPERTIES,
                },
                "required": ["segmentNumber", "title"] + REQUIRED_SCENE_FIELDS,
            },
        },
    },
    "required": ["storyTitle", "storyDescription", "segments"],
}
