# jobs/executor.py
"""
Client side of the external form-filling executor.

The executor is an out-of-process browser automation bot. It receives the
form URL plus the claim token and reports success or a structured failure.
Delivery is at-least-once: a worker that crashes after the executor
succeeded but before the status write lands will have the job reclaimed and
sent again, so the claim token doubles as the idempotency key.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> ExecutionResult:
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> ExecutionResult:
        return cls(ok=False, error=error)


class Executor(Protocol):
    async def execute(self, job_id: uuid.UUID, target: str, claim_token: uuid.UUID) -> ExecutionResult:
        ...


class HttpExecutor:
    """POSTs each job to the executor's HTTP endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def execute(self, job_id: uuid.UUID, target: str, claim_token: uuid.UUID) -> ExecutionResult:
        payload = {
            "job_id": str(job_id),
            "target": target,
            "claim_token": str(claim_token),
        }
        response = await self._client.post(
            self.url,
            json=payload,
            headers={"Idempotency-Key": str(claim_token)},
        )
        return parse_response(response)

    async def aclose(self) -> None:
        await self._client.aclose()


def parse_response(response: httpx.Response) -> ExecutionResult:
    body: dict = {}
    if response.content:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            body = data

    if response.is_success and body.get("success", True):
        return ExecutionResult.success()

    error = body.get("error") or response.text or "no error detail"
    if not response.is_success:
        error = f"HTTP {response.status_code}: {error}"
    logger.warning("Executor rejected job: %s", error)
    return ExecutionResult.failure(str(error)[:2000])
