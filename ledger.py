"""
Generation ledger: one pending/completed/failed record per billable provider call.

GenerationLedger owns the lifecycle rules (terminal records never change, realized
cost is computed at completion). Storage is a backend collaborator; HttpLedgerBackend
talks to the REST API and also serves as the balance source for the credit gate.
"""
from typing import Any, Optional

import requests

import config
from errors import LedgerError, LedgerStateError
from pricing import cost
from scene_types import CreditBalance, GenerationOutput, GenerationRecord

LEDGER_TIMEOUT = 30


def _log(msg: str, verbose_only: bool = False) -> None:
    if verbose_only and not config.DEBUG:
        return
    print(f"[LEDGER] {msg}")


class HttpLedgerBackend:
    """Backend REST client for /generations and /credits/balance."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: float = LEDGER_TIMEOUT):
        self.base_url = (base_url or config.BACKEND_API_URL).rstrip("/")
        self.token = token if token is not None else config.BACKEND_API_TOKEN
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, body: Optional[dict] = None) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = self.session.request(method, f"{self.base_url}{path}", json=body,
                                        headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise LedgerError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error") or resp.text
            except ValueError:
                detail = resp.text
            raise LedgerError(f"{method} {path} returned {resp.status_code}: {detail}")
        try:
            return resp.json()
        except ValueError as e:
            raise LedgerError(f"{method} {path} returned invalid JSON") from e

    @staticmethod
    def _generation(data: dict) -> dict:
        record = data.get("generation", data)
        if not isinstance(record, dict) or "id" not in record:
            raise LedgerError("Ledger response had no generation record")
        return record

    def create(self, meta: dict) -> dict:
        return self._generation(self._request("POST", "/generations", meta))

    def complete(self, generation_id: str, payload: dict) -> dict:
        return self._generation(self._request("POST", f"/generations/{generation_id}/complete", payload))

    def fail(self, generation_id: str, error_message: str) -> dict:
        return self._generation(
            self._request("POST", f"/generations/{generation_id}/fail", {"errorMessage": error_message})
        )

    def get_balance(self) -> CreditBalance:
        return CreditBalance.from_dict(self._request("GET", "/credits/balance"))


class GenerationLedger:
    """
    Record lifecycle on top of a backend with create / complete / fail methods.

    `operation` is the pricing key (see pricing.PRICING) used to compute the
    realized cost when the record completes. Per-record state is dropped once a
    record is completed or failed; only its id is kept to refuse later changes.
    """

    def __init__(self, backend: Any):
        self.backend = backend
        self._operations: dict[str, str] = {}
        self._terminal: set[str] = set()

    def create(self, meta: dict, operation: str) -> GenerationRecord:
        payload = {k: v for k, v in meta.items() if v is not None}
        record = GenerationRecord.from_dict(self.backend.create(payload))
        self._operations[record.id] = operation
        _log(f"created {record.generation_type} record {record.id} ({operation})", verbose_only=True)
        return record

    def _ensure_open(self, generation_id: str, action: str) -> None:
        if generation_id in self._terminal:
            raise LedgerStateError(f"Cannot {action} generation {generation_id}: already completed or failed")

    def _finish(self, generation_id: str) -> None:
        self._operations.pop(generation_id, None)
        self._terminal.add(generation_id)

    def realized_cost(self, generation_id: str, output: GenerationOutput) -> float:
        operation = self._operations.get(generation_id, "")
        return round(cost(operation, output.duration_seconds) * output.billed_units, 2)

    def complete(self, generation_id: str, output: GenerationOutput) -> GenerationRecord:
        self._ensure_open(generation_id, "complete")
        cost_mxn = self.realized_cost(generation_id, output)
        record = GenerationRecord.from_dict(self.backend.complete(generation_id, output.to_payload(cost_mxn)))
        self._finish(generation_id)
        _log(f"completed {generation_id} (${cost_mxn:.2f} MXN)")
        return record

    def fail(self, generation_id: str, error_message: str) -> GenerationRecord:
        self._ensure_open(generation_id, "fail")
        record = GenerationRecord.from_dict(self.backend.fail(generation_id, error_message))
        self._finish(generation_id)
        _log(f"failed {generation_id}: {error_message}")
        return record
