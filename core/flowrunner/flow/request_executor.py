"""
Request Executor - One HTTP call with a bounded lifetime.

The call races three things: the response, a hard timeout and a
cancellation token the runner trips from ``stop()``. Whichever finishes
first wins and the others are torn down, on every exit path.

Outcome classification against the step's failure policy:

    outcome               policy=stop   policy=continue
    2xx                   success       success
    non-2xx               error         success (status kept in output)
    network/timeout/abort error         error (flow keeps going)
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from flowrunner.config import DEFAULT_REQUEST_TIMEOUT
from flowrunner.flow.errors import BodyPreparationError
from flowrunner.flow.steps import FailurePolicy, RequestStep

logger = logging.getLogger(__name__)

BODYLESS_METHODS = frozenset({"GET", "HEAD"})


class CancellationToken:
    """Cooperative cancellation handle threaded into a single request."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class _Aborted(Exception):
    """The request was cut short by the timeout or the cancellation token."""


@dataclass
class RequestOutcome:
    status: str  # "success" | "error"
    output: dict[str, Any] | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)


def _header(headers: dict[str, Any], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return str(value)
    return None


def prepare_body(
    body: Any,
    headers: dict[str, Any],
    unquoted_placeholders: dict[str, Any] | None = None,
) -> str:
    """Serialize a request body, inlining unquoted placeholders as JSON literals.

    Raises:
        BodyPreparationError: body cannot be encoded, or is declared JSON
            and does not parse once placeholders are inlined.
    """
    try:
        text = body if isinstance(body, str) else json.dumps(body)
    except (TypeError, ValueError) as e:
        raise BodyPreparationError(f"Failed to stringify request body: {e}") from e

    for placeholder, raw in (unquoted_placeholders or {}).items():
        try:
            literal = json.dumps(raw)
        except (TypeError, ValueError) as e:
            raise BodyPreparationError(
                f"Failed to encode unquoted value for {placeholder}: {e}"
            ) from e
        text = text.replace(json.dumps(placeholder), literal)

    content_type = _header(headers, "Content-Type") or ""
    if "json" in content_type.lower():
        try:
            json.loads(text)
        except ValueError as e:
            raise BodyPreparationError(f"Request body is not valid JSON: {e}") from e
    return text


class RequestExecutor:
    """
    Executes request steps over an ``httpx.AsyncClient``.

    Example:
        async with httpx.AsyncClient() as client:
            executor = RequestExecutor(client=client, timeout=10.0)
            outcome = await executor.execute(step, {}, CancellationToken())
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self._client = client
        self.timeout = timeout

    async def execute(
        self,
        step: RequestStep,
        unquoted_placeholders: dict[str, Any],
        token: CancellationToken,
    ) -> RequestOutcome:
        method = (step.method or "GET").upper()
        headers = {str(k): str(v) for k, v in (step.headers or {}).items()}
        content: str | None = None

        if step.body not in (None, "") and method not in BODYLESS_METHODS:
            if _header(headers, "Content-Type") is None:
                headers["Content-Type"] = "application/json"
            try:
                content = prepare_body(step.body, headers, unquoted_placeholders)
            except BodyPreparationError as e:
                return RequestOutcome(status="error", error=str(e))

        try:
            response = await self._send(method, step.url, headers, content, token)
        except _Aborted as e:
            return RequestOutcome(status="error", error=str(e))
        except httpx.HTTPError as e:
            logger.warning(f"Request for step {step.id} failed: {e!r}")
            return RequestOutcome(
                status="error", error=str(e) or "Network error or invalid request"
            )

        warnings: list[str] = []
        output = {
            "status": response.status_code,
            "headers": dict(response.headers),
            "body": self._parse_body(response, warnings),
        }

        if response.is_success:
            return RequestOutcome(status="success", output=output, warnings=warnings)

        if step.on_failure == FailurePolicy.CONTINUE:
            return RequestOutcome(status="success", output=output, warnings=warnings)

        return RequestOutcome(
            status="error",
            output=output,
            error=f"Request failed with status {response.status_code}",
            warnings=warnings,
        )

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        content: str | None,
        token: CancellationToken,
    ) -> httpx.Response:
        client = self._client
        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient()

        # self.timeout is the only deadline for this call
        send = asyncio.ensure_future(
            client.request(method, url, headers=headers, content=content, timeout=None)
        )
        cancelled = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {send, cancelled},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if send in done:
                return send.result()
            if cancelled in done:
                raise _Aborted("Request aborted by user")
            raise _Aborted(f"Request timed out ({self.timeout:g}s)")
        finally:
            for task in (send, cancelled):
                if not task.done():
                    task.cancel()
            await asyncio.gather(send, cancelled, return_exceptions=True)
            if owns_client:
                await client.aclose()

    @staticmethod
    def _parse_body(response: httpx.Response, warnings: list[str]) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError as e:
                warnings.append(f"Response body parsing failed: {e}. Using raw text.")
        return response.text
