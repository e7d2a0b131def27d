"""
Unit tests for config.py.
"""

import unittest
import sys
from pathlib import Path

# Add parent directory to path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import config


class TestConfig(unittest.TestCase):
    """Test cases for Config class."""

    def test_story_limits(self):
        cfg = config.Config()
        self.assertEqual(cfg.min_story_segments, 2)
        self.assertEqual(cfg.max_story_segments, 6)

    def test_clamp_segment_count(self):
        cfg = config.Config()
        self.assertEqual(cfg.clamp_segment_count(1), 2)
        self.assertEqual(cfg.clamp_segment_count(4), 4)
        self.assertEqual(cfg.clamp_segment_count(12), 6)

    def test_max_video_wait(self):
        cfg = config.Config()
        self.assertEqual(cfg.max_video_wait_seconds, config.VIDEO_POLL_INTERVAL * config.VIDEO_MAX_POLLS)


class TestEnvHelpers(unittest.TestCase):

    def test_env_float_default(self):
        self.assertEqual(config._env_float("SURELY_UNSET_TIMEOUT_VAR", 2.5), 2.5)

    def test_env_int_reads_value(self):
        import os
        os.environ["TEST_CONFIG_MAX_POLLS"] = "7"
        try:
            self.assertEqual(config._env_int("TEST_CONFIG_MAX_POLLS", 60), 7)
        finally:
            del os.environ["TEST_CONFIG_MAX_POLLS"]

    def test_module_defaults_are_typed(self):
        self.assertIsInstance(config.DEFAULT_TIMEOUT, float)
        self.assertIsInstance(config.VIDEO_MAX_POLLS, int)
        self.assertIsInstance(config.RETRY_ATTEMPTS, int)
        self.assertIn(config.TEXT_PROVIDER, ("google", "openai"))
        self.assertFalse(config.BACKEND_API_URL.endswith("/"))


if __name__ == "__main__":
    unittest.main()
