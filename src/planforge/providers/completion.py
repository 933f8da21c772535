"""
planforge: completion-backed oracle

File: src/planforge/providers/completion.py

Purpose
- Adapt any text-completion backend into the compile/generate oracle.

What should be included in this file
- Prompt rendering, tolerant reply parsing and call logging around a single
  injected ``transport(system, user) -> str`` coroutine.

Functional requirements
- Transport failures are normalized into the ``ProviderError`` taxonomy.
- Every call, successful or not, is written to the call log when one is configured.

Non-functional requirements
- No SDK is imported here; vendor clients are wrapped by the caller's transport.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeAlias, TypeVar

import structlog

from planforge.providers.base import (
    BaseProvider,
    CompileRequest,
    CompileResult,
    GenerateRequest,
    GenerateResult,
    ProviderError,
    ProviderTimeoutError,
)
from planforge.providers.call_log import CallLog, CallLogEntry, CallPhase
from planforge.providers.prompt_templates import render_compile_prompts, render_generate_prompts
from planforge.providers.response_parser import parse_compile_response, parse_generate_response
from planforge.utils.concurrency import run_with_timeout

if TYPE_CHECKING:
    from planforge.providers.prompt_templates import RenderedPrompt

Transport: TypeAlias = Callable[[str, str], Awaitable[str]]
ResultT = TypeVar("ResultT")

_PING_SYSTEM = "Reply with the single word: ok"
_PING_USER = "ping"


class CompletionProvider(BaseProvider):
    """Oracle driven by a plain ``system``/``user`` text completion transport."""

    def __init__(
        self,
        transport: Transport,
        *,
        provider_name: str = "completion",
        model: str = "default",
        timeout_seconds: float | None = None,
        call_log: CallLog | None = None,
        logger: Any | None = None,
    ) -> None:
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._transport = transport
        self.provider_name = provider_name
        self.model = model
        self._timeout_seconds = timeout_seconds
        self._call_log = call_log
        self._log = logger if logger is not None else structlog.get_logger(__name__)

    async def compile(self, request: CompileRequest) -> CompileResult:
        prompt = render_compile_prompts(request)
        return await self._call(
            prompt,
            node=request.node_path,
            phase=CallPhase.COMPILE,
            parse=lambda text: parse_compile_response(
                text, node_path=request.node_path, provider=self.provider_name
            ),
        )

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        prompt = render_generate_prompts(request)
        return await self._call(
            prompt,
            node=request.node_path,
            phase=CallPhase.GENERATE,
            parse=lambda text: parse_generate_response(text, provider=self.provider_name),
        )

    async def test_connection(self) -> bool:
        try:
            await self._send(_PING_SYSTEM, _PING_USER)
        except ProviderError as exc:
            self._log.warning("provider_connection_failed", provider=self.provider_name, error=str(exc))
            return False
        return True

    async def _call(
        self,
        prompt: RenderedPrompt,
        *,
        node: str,
        phase: CallPhase,
        parse: Callable[[str], ResultT],
    ) -> ResultT:
        started = time.perf_counter()
        output = ""
        try:
            output = await self._send(prompt.system, prompt.user)
            result = parse(output)
        except ProviderError as exc:
            self._record(prompt, node, phase, output, started, error=str(exc))
            raise
        self._record(prompt, node, phase, output, started, error=None)
        self._log.debug(
            "provider_call_completed",
            provider=self.provider_name,
            node_path=node,
            phase=phase.value,
            prompt_hash=prompt.prompt_hash,
        )
        return result

    async def _send(self, system: str, user: str) -> str:
        try:
            if self._timeout_seconds is None:
                reply = await self._transport(system, user)
            else:
                reply = await run_with_timeout(self._transport(system, user), self._timeout_seconds)
        except ProviderError:
            raise
        except TimeoutError as exc:
            raise ProviderTimeoutError(str(exc), provider=self.provider_name) from exc
        except Exception as exc:  # noqa: BLE001 - transport boundary
            raise ProviderError(
                provider=self.provider_name,
                code="transport_failed",
                detail=f"{type(exc).__name__}: {exc}",
                retryable=False,
            ) from exc
        if not isinstance(reply, str):
            raise ProviderError(
                provider=self.provider_name,
                code="transport_failed",
                detail=f"transport returned {type(reply).__name__}, expected str",
                retryable=False,
            )
        return reply

    def _record(
        self,
        prompt: RenderedPrompt,
        node: str,
        phase: CallPhase,
        output: str,
        started: float,
        *,
        error: str | None,
    ) -> None:
        if self._call_log is None:
            return
        self._call_log.record(
            CallLogEntry(
                node=node,
                phase=phase,
                provider=self.provider_name,
                model=self.model,
                input=f"{prompt.system}\n\n{prompt.user}",
                output=output,
                duration_ms=int((time.perf_counter() - started) * 1000),
                success=error is None,
                error=error,
            )
        )


__all__ = ["CompletionProvider", "Transport"]
