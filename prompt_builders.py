"""
Modular prompt builders for scene planning and media generation.
Every builder is a pure function of its inputs, so the same scene always yields
the same prompt (and the same billed request).
"""
from typing import Optional

from scene_types import VALID_DURATIONS, ImageSceneConfig, ParsedStyle, SceneConfig

VIDEO_CONSISTENCY_INSTRUCTION = (
    "Generate a high-quality video maintaining the character's appearance and visual style consistency."
)
IMAGE_CONSISTENCY_INSTRUCTION = (
    "Generate a high-quality image maintaining the character's appearance and visual style consistency."
)

_DURATION_ENUM = ", ".join(str(d) for d in VALID_DURATIONS[:-1]) + f", or {VALID_DURATIONS[-1]}"


def get_hyper_realism_rules() -> str:
    """Shared realism rules for scene and story planning."""
    return """HYPER-REALISM RULES:

1. PHYSICAL CONDITIONS over aesthetic descriptions
   - Not "beautiful sunset" but "light at 17 degree angle, 400K warmer than ideal, micro-shadows with irregular edges"

2. MANDATORY IMPERFECTIONS:
   - Camera shake 0.3-0.8 degrees
   - Focus 3-5cm off ideal
   - White balance off 200-400K
   - Chromatic noise in shadows
   - H.264 compression artifacts

3. REAL OPTICS:
   - Odd focal lengths: 37mm, 49mm, 63mm (NOT 35mm, 50mm)
   - Unusual aperture: f/1.9, f/2.2, f/3.5
   - Lens artifacts: barrel distortion, chromatic aberration

4. INVISIBLE CONTEXT:
   - Events/light sources outside frame
   - Environmental factors affecting subject

5. IMPERFECT TIME:
   - Freeze micro-failures, not perfection
   - Fabric lag, expressions between states

6. SPONTANEOUS CAPTURE:
   - "Accidental recording", "Handheld, no stabilization"

7. VOICE IMPERFECTIONS:
   - Breath, pauses, trailing off, hesitation

AVOID: perfect anything, cinematic polish, studio aesthetic, AI/CGI look."""


def get_json_only_instruction() -> str:
    return "CRITICAL: Respond with ONLY a JSON object. Nothing else. No explanations. No markdown. Just the JSON."


def get_scene_builder_prompt() -> str:
    """System instruction for planning a single video scene."""
    return f"""You are a hyper-realistic video scene generator.

{get_json_only_instruction()}

Required JSON structure:
{{
  "escena": "Detailed scene setting with physical conditions and imperfections",
  "condicionesFisicas": "Lighting physics, atmospheric conditions, spatial reality",
  "fondo": "Background elements with their physical state",
  "accion": "Character action captured at imperfect moment",
  "dialogo": "Natural dialogue (1-3 sentences, with realistic speech imperfections)",
  "voiceStyle": "Voice delivery style with imperfections",
  "movimiento": "Camera movement with realistic defects",
  "defectosTecnicos": "Technical imperfections (compression, sensor artifacts, optical flaws)",
  "contextoInvisible": "What happens outside frame that affects what we see",
  "suggestedDuration": 4
}}

{get_hyper_realism_rules()}

suggestedDuration must be: {_DURATION_ENUM}
Match user's language (Spanish/English)
Keep dialogue concise (1-3 sentences)

REMEMBER: Return ONLY the JSON object. No other text."""


def build_scene_builder_prompt(idea: str) -> str:
    """Full text sent to the language model to plan one video scene from a user's idea."""
    return f"""{get_scene_builder_prompt()}

USER VIDEO IDEA: "{idea.strip()}"

Generate the JSON object now:"""


def get_image_scene_builder_prompt() -> str:
    """System instruction for planning a single still image."""
    return f"""You are a hyper-realistic photographer and visual director.

{get_json_only_instruction()}

Required JSON structure:
{{
  "escena": "Detailed environment description, atmosphere, and mood",
  "fondo": "Specific background elements, depth, and context",
  "accion": "Precise character pose, expression, and action",
  "lighting": "Advanced lighting setup (e.g., chiaroscuro, volumetric, practical lights, color temperature)",
  "camera": "Specific camera gear, lens choice (mm), aperture (f-stop), and angle",
  "condicionesFisicas": "Atmospheric conditions (haze, dust, humidity) and physical lighting properties",
  "defectosTecnicos": "Photographic imperfections (film grain, chromatic aberration, lens flare, motion blur)",
  "contextoInvisible": "Elements or light sources outside the frame that influence the shot"
}}

PHOTOGRAPHIC PRECISION:
- Specify lens focal length and aperture depth of field
- Describe light sources realistically (softbox, rim light, golden hour sun)
- Include imperfections: slight motion blur, lens flare, vignetting, chromatic aberration
- Avoid the "perfect" or "AI-generated" look and generic descriptions like "beautiful lighting"

Match user's language (Spanish/English).
Return ONLY the JSON object. No other text."""


def build_image_scene_builder_prompt(idea: str) -> str:
    """Full text sent to the language model to plan one still image from a user's idea."""
    return f"""{get_image_scene_builder_prompt()}

USER IMAGE IDEA: "{idea.strip()}"

Generate the JSON object now:"""


def get_story_builder_prompt(segment_duration: int = VALID_DURATIONS[-1]) -> str:
    """System instruction for planning a multi-segment story."""
    return f"""You are a hyper-realistic multi-segment story generator.

{get_json_only_instruction()}

Required JSON structure:
{{
  "storyTitle": "Authentic title",
  "storyDescription": "One sentence story arc",
  "segments": [
    {{
      "segmentNumber": 1,
      "title": "Segment title",
      "escena": "Scene with physical conditions",
      "condicionesFisicas": "Lighting physics, atmospheric reality",
      "fondo": "Background physical state",
      "accion": "Action at imperfect moment",
      "dialogo": "Natural speech with imperfections",
      "voiceStyle": "Voice delivery with artifacts",
      "movimiento": "Camera movement with defects",
      "defectosTecnicos": "Technical flaws",
      "contextoInvisible": "Off-frame events",
      "suggestedDuration": {segment_duration}
    }}
  ]
}}

STORY RULES:
- Each segment continues visually from the previous one (same character, same place unless the story moves)
- Each segment has DIFFERENT imperfections
- Show progression: light changes, vocal fatigue, environment shifts
- Documentary feel, not produced
- All segments {segment_duration} seconds
- Apply the same hyper-realism rules as single scenes

Match user's language.
Return ONLY JSON object."""


def build_story_builder_prompt(idea: str, segment_count: int) -> str:
    """Full text sent to the language model to plan a story of segment_count segments."""
    return f"""{get_story_builder_prompt()}

USER STORY IDEA: "{idea.strip()}"
NUMBER OF SEGMENTS: {segment_count}

Generate {segment_count} segments. Return ONLY JSON object:"""


STYLE_EXTRACTION_PROMPT = """You are an expert visual style analyst. Analyze this image and extract a comprehensive style description that can be used to generate new images in the same aesthetic.

Provide your analysis in the following structured format:

## Visual Style Overview
[2-3 sentence summary of the overall aesthetic]

## Color Palette
[Detailed description of colors, tones, saturation levels]

## Artistic Style
[Art style, rendering technique, medium (photo-realistic, illustration, 3D render, painting, etc.)]

## Lighting & Atmosphere
[Lighting direction, intensity, mood, time of day if applicable]

## Composition & Framing
[Perspective, depth, focus, framing style]

## Texture & Detail Level
[Surface qualities, level of detail, grain/smoothness]

## Key Visual Elements
[Distinctive visual characteristics that define this style]

## Style Keywords
[Comma-separated list of 8-12 descriptive keywords for image generation]"""


def build_style_extraction_prompt(user_guidance: Optional[str] = None) -> str:
    if user_guidance and user_guidance.strip():
        return f"{STYLE_EXTRACTION_PROMPT}\n\nAdditional guidance from user: {user_guidance.strip()}"
    return STYLE_EXTRACTION_PROMPT


def build_character_analysis_prompt() -> str:
    """Vision prompt that turns a character image into a reusable subject description."""
    return """Analyze this character image and provide a detailed visual description for image generation.

Focus on describing:
1. Subject/Character: What or who is depicted (person, animal, creature, object)
2. Appearance: Physical features, body type, facial features, expression
3. Clothing/Accessories: What they're wearing or carrying
4. Pose/Action: How they're positioned or what they're doing
5. Notable Details: Any distinctive features, props, or elements

Write a concise but comprehensive prompt suitable for regenerating this character in a different art style.
Format as a single paragraph, 2-4 sentences.
Do NOT mention the art style, colors, or lighting - focus only on the SUBJECT itself."""


def _style_lines(style: Optional[ParsedStyle]) -> list[str]:
    if style is None:
        return []
    lines = []
    if style.keywords:
        lines.append(f"Visual Style: {', '.join(style.keywords)}")
    if style.lighting:
        lines.append(f"Lighting: {style.lighting}")
    if style.color_palette:
        lines.append(f"Color Palette: {style.color_palette}")
    if style.artistic_style:
        lines.append(f"Art Style: {style.artistic_style}")
    return lines


def build_video_prompt(
    scene: SceneConfig,
    style: Optional[ParsedStyle] = None,
    character_description: str = "",
    duration_seconds: Optional[int] = None,
) -> str:
    """
    Build the video provider prompt.

    Field order is part of the provider contract: character, scene, background,
    action, dialogue, voice style, camera/motion, style attributes, duration, and
    the consistency instruction. Empty optional fields are left out entirely.

    Args:
        scene: The planned shot.
        style: Optional style attributes (keywords, lighting, palette, art style).
        character_description: Subject description; omitted when empty.
        duration_seconds: Overrides scene.suggested_duration (story mode passes 8).
    """
    duration = duration_seconds or scene.suggested_duration
    parts = []
    if character_description.strip():
        parts.append(f"Character: {character_description.strip()}")
    parts.append(f"Scene Setting: {scene.escena}")
    if scene.fondo:
        parts.append(f"Background: {scene.fondo}")
    parts.append(f"Action: {scene.accion}")
    if scene.dialogo:
        parts.append(f'Character Dialogue: "{scene.dialogo}"')
    if scene.voice_style:
        parts.append(f"Voice Style: {scene.voice_style}")
    if scene.movimiento:
        parts.append(f"Camera/Motion: {scene.movimiento}")
    parts.extend(_style_lines(style))
    parts.append(f"Duration: {duration} seconds")
    parts.append(VIDEO_CONSISTENCY_INSTRUCTION)
    return "\n\n".join(parts)


def build_image_prompt(
    scene: SceneConfig | ImageSceneConfig,
    style: Optional[ParsedStyle] = None,
    character_description: str = "",
) -> str:
    """Build the image provider prompt. Same ordering as the video prompt, minus dialogue and duration."""
    parts = []
    if character_description.strip():
        parts.append(f"Character: {character_description.strip()}")
    parts.append(f"Scene Setting: {scene.escena}")
    if scene.fondo:
        parts.append(f"Background: {scene.fondo}")
    parts.append(f"Action/Pose: {scene.accion}")
    if isinstance(scene, ImageSceneConfig):
        parts.append(f"Scene Lighting: {scene.lighting}")
        parts.append(f"Camera: {scene.camera}")
    parts.extend(_style_lines(style))
    parts.append(IMAGE_CONSISTENCY_INSTRUCTION)
    return "\n\n".join(parts)


def build_character_image_prompt(
    character_description: str,
    style: ParsedStyle,
    aspect_ratio: str = "1:1",
) -> str:
    """Prompt for rendering a character sheet image in a saved style."""
    lines = [f"Generate an image of: {character_description.strip()}", ""]
    if style.keywords:
        lines.append(f"Visual style: {', '.join(style.keywords)}")
    if style.color_palette:
        lines.append(f"Color palette: {style.color_palette}")
    if style.lighting:
        lines.append(f"Lighting: {style.lighting}")
    if style.artistic_style:
        lines.append(f"Art style: {style.artistic_style}")
    if style.texture:
        lines.append(f"Texture: {style.texture}")
    lines.append("")
    lines.append(f"High quality, detailed, professional composition. Aspect ratio: {aspect_ratio}.")
    return "\n".join(lines)
