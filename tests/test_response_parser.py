"""
Unit tests for response_parser.py: strategy cascade, validation and trace events.
"""

import json
import unittest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import response_parser
from errors import ParseFailure


SCENE = {
    "escena": "Night market",
    "accion": "Haggles over a lamp",
    "dialogo": "Too much, friend",
    "suggestedDuration": 6,
}


def silent(_event):
    pass


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def names(self, kind):
        return [e.strategy for e in self.events if e.event == kind]


class TestStrategyOrder(unittest.TestCase):

    def test_bare_object_never_falls_through(self):
        calls = []

        def spy(name, fn):
            def wrapped(text):
                calls.append(name)
                return fn(text)
            return wrapped

        strategies = [(name, spy(name, fn)) for name, fn in response_parser.build_strategies(response_parser.SCENE)]
        scene = response_parser.parse_scene(json.dumps(SCENE), observer=silent, strategies=strategies)
        self.assertEqual(calls, ["direct"])
        self.assertEqual(scene.escena, "Night market")
        self.assertEqual(scene.suggested_duration, 6)

    def test_code_fences_accepted_by_strip_fences(self):
        recorder = Recorder()
        text = "```json\n" + json.dumps(SCENE) + "\n```"
        response_parser.parse_scene(text, observer=recorder)
        self.assertEqual(recorder.names("strategy_succeeded"), ["strip_fences"])
        self.assertEqual(recorder.names("strategy_failed"), ["direct"])

    def test_prose_around_object_uses_brace_regex(self):
        recorder = Recorder()
        text = "Sure! Here is your scene:\n" + json.dumps(SCENE) + "\nEnjoy."
        response_parser.parse_scene(text, observer=recorder)
        self.assertEqual(recorder.names("strategy_succeeded"), ["brace_regex"])

    def test_manual_extraction_from_broken_json(self):
        recorder = Recorder()
        text = ('The plan: "escena": "Bus stop \\"7\\"", "accion": "Waits", '
                '"dialogo": "Late again", "suggestedDuration": 3 and that is it')
        scene = response_parser.parse_scene(text, observer=recorder)
        self.assertEqual(recorder.names("strategy_succeeded"), ["manual_fields"])
        self.assertEqual(scene.escena, 'Bus stop "7"')
        self.assertEqual(scene.dialogo, "Late again")
        self.assertEqual(scene.suggested_duration, 2)

    def test_manual_extraction_requires_all_mandatory_fields(self):
        text = 'Notes: "escena": "Bus stop", "accion": "Waits" and nothing else'
        with self.assertRaises(ParseFailure) as ctx:
            response_parser.parse_scene(text, observer=silent)
        self.assertIn("Could not parse AI response", str(ctx.exception))
        self.assertTrue(ctx.exception.preview.startswith("Notes:"))


class TestValidation(unittest.TestCase):

    def test_empty_required_field_fails(self):
        data = dict(SCENE, dialogo="  ")
        with self.assertRaises(ParseFailure) as ctx:
            response_parser.parse_scene(json.dumps(data), observer=silent)
        self.assertIn("dialogo", str(ctx.exception))

    def test_empty_response(self):
        with self.assertRaises(ParseFailure):
            response_parser.parse_scene("   ", observer=silent)

    def test_non_string_response(self):
        with self.assertRaises(ParseFailure):
            response_parser.parse_scene(42, observer=silent)

    def test_preparsed_dict_accepted(self):
        recorder = Recorder()
        scene = response_parser.parse_scene(dict(SCENE), observer=recorder)
        self.assertEqual(scene.accion, "Haggles over a lamp")
        self.assertEqual(recorder.names("parse_succeeded"), ["preparsed"])

    def test_image_scene_requires_lighting_and_camera(self):
        data = {"escena": "Studio", "accion": "Poses", "lighting": "Softbox", "camera": "63mm f/1.9"}
        scene = response_parser.parse_image_scene(json.dumps(data), observer=silent)
        self.assertEqual(scene.camera, "63mm f/1.9")
        with self.assertRaises(ParseFailure):
            response_parser.parse_image_scene(json.dumps({"escena": "Studio", "accion": "Poses"}), observer=silent)

    def test_control_characters_removed(self):
        text = '{"escena": "Dock\x01", "accion": "Rows", "dialogo": "Almost\x02 there"}'
        scene = response_parser.parse_scene(text, observer=silent)
        self.assertEqual(scene.escena, "Dock")


class TestStory(unittest.TestCase):

    def _segment(self, n):
        return {"segmentNumber": n, "title": f"Part {n}", "escena": "s", "accion": "a", "dialogo": "d",
                "suggestedDuration": 4}

    def test_segments_renumbered_and_eight_seconds(self):
        data = {"storyTitle": "Trip", "storyDescription": "A trip",
                "segments": [self._segment(5), self._segment(2)]}
        story = response_parser.parse_story(json.dumps(data), observer=silent)
        self.assertEqual([s.segment_number for s in story.segments], [1, 2])
        self.assertEqual([s.title for s in story.segments], ["Part 5", "Part 2"])
        self.assertTrue(all(s.scene.suggested_duration == 8 for s in story.segments))

    def test_bare_array_wrapped_in_shell(self):
        recorder = Recorder()
        text = "Here you go: " + json.dumps([self._segment(1)])
        story = response_parser.parse_story(text, observer=recorder)
        self.assertEqual(recorder.names("strategy_succeeded"), ["array_shell"])
        self.assertEqual(story.title, response_parser.STORY_SHELL_TITLE)
        self.assertEqual(story.description, response_parser.STORY_SHELL_DESCRIPTION)

    def test_segment_missing_dialogue_fails(self):
        seg = self._segment(1)
        seg["dialogo"] = ""
        data = {"storyTitle": "T", "storyDescription": "D", "segments": [seg]}
        with self.assertRaises(ParseFailure) as ctx:
            response_parser.parse_story(json.dumps(data), observer=silent)
        self.assertIn("segments[1].dialogo", str(ctx.exception))

    def test_empty_segments_fail(self):
        data = {"storyTitle": "T", "storyDescription": "D", "segments": []}
        with self.assertRaises(ParseFailure):
            response_parser.parse_story(json.dumps(data), observer=silent)

    def test_missing_title_defaults(self):
        data = {"segments": [self._segment(1)]}
        story = response_parser.parse_story(json.dumps(data), observer=silent)
        self.assertEqual(story.title, "Untitled Story")


class TestTraceEvents(unittest.TestCase):

    def test_failure_emits_parse_failed_with_elapsed(self):
        recorder = Recorder()
        with self.assertRaises(ParseFailure):
            response_parser.parse_scene("no json here", observer=recorder)
        final = recorder.events[-1]
        self.assertEqual(final.event, "parse_failed")
        self.assertGreaterEqual(final.elapsed_ms, 0.0)
        self.assertEqual(len(recorder.names("strategy_attempted")), 6)


class TestStyleAnalysis(unittest.TestCase):

    def test_sections(self):
        text = ("## Visual Style Overview\nMoody.\n\n## Color Palette\nDeep blues\n\n"
                "## Lighting & Atmosphere\nFoggy\n\n## Style Keywords\nnoir, rain, neon\n")
        style = response_parser.parse_style_analysis(text)
        self.assertEqual(style.overview, "Moody.")
        self.assertEqual(style.color_palette, "Deep blues")
        self.assertEqual(style.lighting, "Foggy")
        self.assertEqual(style.keywords, ("noir", "rain", "neon"))

    def test_default_keywords(self):
        self.assertEqual(response_parser.parse_style_analysis("plain text").keywords, ("stylized", "artistic"))


if __name__ == "__main__":
    unittest.main()
