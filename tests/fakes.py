"""
In-memory collaborators shared by the pipeline and story chain tests.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from generation_client import GenerationClient, GenerationResult
from scene_types import CreditBalance


class InMemoryLedgerBackend:
    """Ledger + balance backend that keeps records in a dict and logs every call."""

    def __init__(self, balance=100.0):
        self.balance = balance
        self.records = {}
        self.calls = []
        self._next_id = 1

    def create(self, meta):
        record_id = f"gen-{self._next_id}"
        self._next_id += 1
        self.records[record_id] = {"id": record_id, "status": "pending", **meta}
        self.calls.append(("create", record_id, meta))
        return dict(self.records[record_id])

    def complete(self, record_id, payload):
        self.records[record_id].update(payload, status="completed")
        self.calls.append(("complete", record_id, payload))
        return dict(self.records[record_id])

    def fail(self, record_id, error_message):
        self.records[record_id].update(status="failed", errorMessage=error_message)
        self.calls.append(("fail", record_id, error_message))
        return dict(self.records[record_id])

    def get_balance(self):
        self.calls.append(("get_balance",))
        return CreditBalance(balance=self.balance)

    def statuses(self):
        return [r["status"] for r in self.records.values()]


class FakeClient(GenerationClient):
    """
    Scripted client. Each queue holds GenerationResult values (or exceptions to raise),
    consumed one per call; an empty queue answers with a default success.
    """

    def __init__(self, text=None, image=None, video=None, extend=None):
        self.queues = {
            "text": list(text or []),
            "image": list(image or []),
            "video": list(video or []),
            "extend": list(extend or []),
        }
        self.calls = []

    def _next(self, name, default):
        queue = self.queues[name]
        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    def generate_text(self, prompt, image=None, json_schema=None):
        self.calls.append(("text", prompt, image))
        return self._next("text", GenerationResult.success("", mime_type="text/plain"))

    def generate_image(self, prompt, reference_image=None, aspect_ratio="1:1"):
        self.calls.append(("image", prompt, reference_image))
        return self._next("image", GenerationResult.success(b"img", mime_type="image/png"))

    def generate_video(self, prompt, reference_image=None, duration_seconds=None, aspect_ratio="9:16"):
        self.calls.append(("video", prompt, reference_image))
        return self._next("video", GenerationResult.success(b"video-1", mime_type="video/mp4"))

    def extend_video(self, prompt, previous_video, aspect_ratio="9:16"):
        self.calls.append(("extend", prompt, previous_video))
        return self._next("extend", GenerationResult.success(b"video-ext", mime_type="video/mp4"))

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)
