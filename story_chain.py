"""
Story chain: turns an ordered list of story segments into consecutive videos.

Segment 1 is generated from scratch (or seeded from a reference image). Every
later segment extends the previous segment's video, so segments run strictly in
order. A failure stops the chain; ChainInterrupted carries the segments that
already completed (and were billed).
"""
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import config
from errors import ChainInterrupted
from generation_pipeline import GenerationPipeline
from scene_types import (
    STORY_DURATION,
    MediaInput,
    ParsedStyle,
    SegmentOutput,
    StoryChainResult,
    StorySegment,
)


def _log(msg: str, verbose_only: bool = False) -> None:
    if verbose_only and not config.DEBUG:
        return
    print(f"[STORY] {msg}")


@dataclass(frozen=True)
class AtSegment:
    """Chain state before the call for segment index k (0-based)."""

    k: int
    previous_video: Optional[MediaInput] = None
    result: StoryChainResult = field(default_factory=StoryChainResult)

    @property
    def extends(self) -> bool:
        return self.k > 0


class StoryChainOrchestrator:
    def __init__(
        self,
        pipeline: GenerationPipeline,
        on_segment_start: Optional[Callable[[StorySegment], None]] = None,
        on_segment_complete: Optional[Callable[[SegmentOutput], None]] = None,
    ):
        self.pipeline = pipeline
        self.on_segment_start = on_segment_start
        self.on_segment_complete = on_segment_complete

    def _notify(self, callback, arg) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception as e:
            # Observers report progress only; they never steer the chain
            _log(f"observer {getattr(callback, '__name__', callback)!r} raised: {e}")

    def _step(self, state: AtSegment, segment: StorySegment, style, character_description,
              reference_image, style_id, character_id) -> SegmentOutput:
        common = dict(
            style=style,
            character_description=character_description,
            duration_seconds=STORY_DURATION,
            title=segment.title,
            style_id=style_id,
            character_id=character_id,
        )
        if state.extends:
            outcome = self.pipeline.extend_video(segment.scene, state.previous_video, **common)
        else:
            outcome = self.pipeline.generate_video(segment.scene, reference_image=reference_image, **common)
        return SegmentOutput(
            segment_number=segment.segment_number,
            title=segment.title,
            media=outcome.value,
            mime_type=outcome.mime_type,
            cost_mxn=outcome.cost_mxn,
            was_extended=state.extends,
            record_id=outcome.record.id,
        )

    def run(
        self,
        segments: Sequence[StorySegment],
        style: Optional[ParsedStyle] = None,
        character_description: str = "",
        reference_image: Optional[MediaInput] = None,
        style_id: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> StoryChainResult:
        """
        Generate every segment in order.

        Raises:
            ChainInterrupted: segment k failed; partial_result holds segments before k,
                and later segments are never attempted.
        """
        state = AtSegment(k=0)
        while state.k < len(segments):
            segment = segments[state.k]
            self._notify(self.on_segment_start, segment)
            mode = "extending" if state.extends else "generating"
            _log(f"segment {state.k + 1}/{len(segments)}: {mode} '{segment.title}'")
            try:
                output = self._step(state, segment, style, character_description,
                                    reference_image, style_id, character_id)
            except Exception as e:
                _log(f"chain stopped at segment {state.k + 1}: {e}")
                raise ChainInterrupted(at_segment=state.k + 1, partial_result=state.result, cause=e) from e
            self._notify(self.on_segment_complete, output)
            state = AtSegment(
                k=state.k + 1,
                previous_video=MediaInput(data=output.media, mime_type=output.mime_type),
                result=state.result.with_segment(output),
            )
        _log(f"story complete: {len(state.result.segments)} segments, ${state.result.total_cost:.2f} MXN")
        return state.result
