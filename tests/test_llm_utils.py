"""
Minimal tests for llm_utils: text, image and video calls return the expected shape.
Mocks OpenAI/Google clients so tests do not hit real APIs.
"""

import base64
import unittest
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch, MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

import llm_utils
from errors import AuthInvalid, ProviderTimeout, SafetyFiltered, UnknownProviderError
from scene_types import MediaInput


def _operation(done=True, video=None, error=None, filtered=0):
    response = SimpleNamespace(
        generated_videos=[SimpleNamespace(video=video)] if video is not None else [],
        rai_media_filtered_count=filtered,
        rai_media_filtered_reasons=["person"] if filtered else [],
    )
    return SimpleNamespace(done=done, error=error, response=response)


class TestApiKeys(unittest.TestCase):

    @patch.dict("os.environ", {}, clear=True)
    def test_missing_google_key_is_auth_invalid(self):
        with self.assertRaises(AuthInvalid):
            llm_utils._google_api_key()

    @patch.dict("os.environ", {"GEMINI_API_KEY": "g-test"}, clear=True)
    def test_gemini_key_fallback(self):
        self.assertEqual(llm_utils._google_api_key(), "g-test")

    def test_unknown_provider_rejected(self):
        with self.assertRaises(ValueError):
            llm_utils.generate_text("hi", provider="xai")


class TestGenerateText(unittest.TestCase):
    """Test generate_text returns a TextCompletion; mock underlying API."""

    @patch("llm_utils._openai_client")
    def test_openai_returns_text_and_tokens(self, mock_client_fn):
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(finish_reason="stop", message=SimpleNamespace(content="Hello"))],
            usage=SimpleNamespace(total_tokens=12),
        )
        mock_client_fn.return_value = client
        out = llm_utils.generate_text("Say hi", provider="openai", response_json_schema={"type": "object", "title": "t", "properties": {"a": {"type": "string"}}})
        self.assertEqual(out, llm_utils.TextCompletion("Hello", 12))
        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["response_format"]["type"], "json_schema")
        self.assertFalse(kwargs["response_format"]["json_schema"]["schema"]["additionalProperties"])

    @patch("llm_utils._openai_client")
    def test_openai_inline_image(self, mock_client_fn):
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(finish_reason="stop", message=SimpleNamespace(content="A cat"))],
            usage=None,
        )
        mock_client_fn.return_value = client
        llm_utils.generate_text("Describe", provider="openai", image=MediaInput(b"png", "image/png"))
        content = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        self.assertEqual(content[1]["image_url"]["url"], "data:image/png;base64," + base64.b64encode(b"png").decode())

    @patch("llm_utils._openai_client")
    def test_openai_content_filter(self, mock_client_fn):
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(finish_reason="content_filter", message=SimpleNamespace(content=""))],
            usage=None,
        )
        mock_client_fn.return_value = client
        with self.assertRaises(SafetyFiltered):
            llm_utils.generate_text("x", provider="openai")

    @patch("llm_utils._openai_client")
    def test_openai_empty_content_is_unknown(self, mock_client_fn):
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(finish_reason="stop", message=SimpleNamespace(content=None))],
            usage=SimpleNamespace(total_tokens=4),
        )
        mock_client_fn.return_value = client
        with self.assertRaises(UnknownProviderError):
            llm_utils.generate_text("x", provider="openai")

    @patch("llm_utils._google_client")
    def test_google_returns_text(self, mock_client_fn):
        client = MagicMock()
        client.models.generate_content.return_value = SimpleNamespace(
            text="Scene JSON", prompt_feedback=None, candidates=[],
            usage_metadata=SimpleNamespace(total_token_count=40),
        )
        mock_client_fn.return_value = client
        out = llm_utils.generate_text("Plan a scene", provider="google")
        self.assertEqual(out.text, "Scene JSON")
        self.assertEqual(out.tokens_used, 40)

    @patch("llm_utils._google_client")
    def test_google_blocked_prompt(self, mock_client_fn):
        client = MagicMock()
        client.models.generate_content.return_value = SimpleNamespace(
            text=None, prompt_feedback=SimpleNamespace(block_reason="SAFETY"), candidates=[],
        )
        mock_client_fn.return_value = client
        with self.assertRaises(SafetyFiltered):
            llm_utils.generate_text("x", provider="google")


class TestGenerateImage(unittest.TestCase):

    @patch("llm_utils._google_client")
    def test_google_inline_image(self, mock_client_fn):
        part = SimpleNamespace(inline_data=SimpleNamespace(data=b"imgbytes", mime_type="image/png"))
        client = MagicMock()
        client.models.generate_content.return_value = SimpleNamespace(
            prompt_feedback=None,
            candidates=[SimpleNamespace(finish_reason="STOP", content=SimpleNamespace(parts=[part]))],
        )
        mock_client_fn.return_value = client
        out = llm_utils.generate_image("a fox", provider="google")
        self.assertEqual(out.data, b"imgbytes")
        self.assertEqual(out.mime_type, "image/png")
        self.assertIn("Aspect ratio: 1:1", client.models.generate_content.call_args.kwargs["contents"][0])

    @patch("llm_utils._google_client")
    def test_google_no_image(self, mock_client_fn):
        client = MagicMock()
        client.models.generate_content.return_value = SimpleNamespace(prompt_feedback=None, candidates=[])
        mock_client_fn.return_value = client
        with self.assertRaises(UnknownProviderError):
            llm_utils.generate_image("a fox", provider="google")

    @patch("llm_utils._openai_client")
    def test_openai_reference_uses_edit(self, mock_client_fn):
        client = MagicMock()
        client.images.edit.return_value = SimpleNamespace(data=[SimpleNamespace(b64_json=base64.b64encode(b"x").decode())])
        mock_client_fn.return_value = client
        out = llm_utils.generate_image("a fox", aspect_ratio="9:16", provider="openai",
                                       reference_image=MediaInput(b"ref", "image/jpeg"))
        self.assertEqual(out.data, b"x")
        self.assertEqual(client.images.edit.call_args.kwargs["size"], "1024x1536")
        client.images.generate.assert_not_called()


class TestPollOperation(unittest.TestCase):

    def test_polls_until_done(self):
        states = [_operation(done=False), _operation(done=True)]
        sleeps = []
        out = llm_utils.poll_operation(_operation(done=False), refresh=lambda op: states.pop(0),
                                       poll_interval=10, max_polls=5, sleep=sleeps.append)
        self.assertTrue(out.done)
        self.assertEqual(sleeps, [10, 10])

    def test_exceeding_bound_is_timeout(self):
        sleeps = []
        with self.assertRaises(ProviderTimeout):
            llm_utils.poll_operation(_operation(done=False), refresh=lambda op: op,
                                     poll_interval=10, max_polls=3, sleep=sleeps.append)
        self.assertEqual(len(sleeps), 3)


class TestVideoFromOperation(unittest.TestCase):

    def test_inline_bytes(self):
        video = SimpleNamespace(video_bytes=b"vid", uri=None, mime_type="video/mp4")
        out = llm_utils._video_from_operation(_operation(video=video), "key", 300)
        self.assertEqual(out.data, b"vid")

    @patch("llm_utils.requests.get")
    def test_download_from_uri(self, mock_get):
        mock_get.return_value = MagicMock(content=b"downloaded")
        video = SimpleNamespace(video_bytes=None, uri="https://example.test/v.mp4", mime_type=None)
        out = llm_utils._video_from_operation(_operation(video=video), "key", 300)
        self.assertEqual(out.data, b"downloaded")
        self.assertEqual(out.mime_type, "video/mp4")
        self.assertEqual(out.uri, "https://example.test/v.mp4")
        self.assertEqual(mock_get.call_args.kwargs["headers"], {"x-goog-api-key": "key"})

    def test_filtered_is_safety(self):
        with self.assertRaises(SafetyFiltered):
            llm_utils._video_from_operation(_operation(filtered=1), "key", 300)

    def test_no_video(self):
        with self.assertRaises(UnknownProviderError):
            llm_utils._video_from_operation(_operation(), "key", 300)


class TestGenerateVideo(unittest.TestCase):

    @patch("llm_utils._google_api_key", return_value="key")
    @patch("llm_utils._google_client")
    def test_image_seeded_video(self, mock_client_fn, _key):
        video = SimpleNamespace(video_bytes=b"vid", uri=None, mime_type="video/mp4")
        client = MagicMock()
        client.models.generate_videos.return_value = _operation(video=video)
        mock_client_fn.return_value = client
        out = llm_utils.generate_video("prompt", reference_image=MediaInput(b"ref", "image/png"), sleep=lambda s: None)
        self.assertEqual(out.data, b"vid")
        kwargs = client.models.generate_videos.call_args.kwargs
        self.assertIn("image", kwargs)
        self.assertNotIn("video", kwargs)

    @patch("llm_utils._google_api_key", return_value="key")
    @patch("llm_utils._google_client")
    def test_extend_passes_previous_video(self, mock_client_fn, _key):
        video = SimpleNamespace(video_bytes=b"vid2", uri=None, mime_type="video/mp4")
        client = MagicMock()
        client.models.generate_videos.return_value = _operation(done=False)
        client.operations.get.return_value = _operation(video=video)
        mock_client_fn.return_value = client
        out = llm_utils.extend_video("next", MediaInput(b"vid1", "video/mp4"), sleep=lambda s: None)
        self.assertEqual(out.data, b"vid2")
        kwargs = client.models.generate_videos.call_args.kwargs
        self.assertEqual(kwargs["video"].video_bytes, b"vid1")
        self.assertNotIn("image", kwargs)
        client.operations.get.assert_called_once()


if __name__ == "__main__":
    unittest.main()
