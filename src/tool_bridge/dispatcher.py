"""Route extracted instructions to backends and fold the outcome back into text."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from tool_bridge.config import BridgeSettings
from tool_bridge.errors import InvalidInstruction, ToolBridgeError, UnknownBackend, classify_error
from tool_bridge.extractor import clean_response_text, extract_instruction, response_text
from tool_bridge.registry import ToolRegistry
from tool_bridge.results import shape_result, unwrap_content
from tool_bridge.supervisor import ConnectionSupervisor
from tool_bridge.types import Instruction, ToolResult

__all__ = ["Dispatcher", "DispatchOutcome", "ToolStartCallback", "ToolResultCallback"]

ToolStartCallback = Callable[[str, str], Union[None, Awaitable[None]]]
ToolResultCallback = Callable[[str, str, ToolResult], Union[None, Awaitable[None]]]

# Targets that mean "the model did not say which backend"
UNSPECIFIED_TARGETS = frozenset({"", "unknown"})


@dataclass
class DispatchOutcome:
    """What one model response turned into.

    ``text`` is the response text with any directive removed; when the
    response carried no directive it is the original text, unchanged.
    """

    response: Any
    text: str
    instruction: Optional[Instruction] = None
    result: Optional[ToolResult] = None

    @property
    def dispatched(self) -> bool:
        return self.result is not None

    def messages(self) -> list[str]:
        """Chat-visible messages: the cleaned text, then the tool outcome."""
        parts = [self.text] if self.text else []
        if self.result is not None:
            parts.append(self.result.as_text())
        return parts


class Dispatcher:
    """
    Validates instructions, routes them to a supervisor and shapes the result.

    Nothing raised while resolving or invoking a tool escapes ``dispatch``;
    failures come back as ``ToolResult(success=False)``. Cancellation is the
    one exception and always propagates.
    """

    def __init__(
        self,
        supervisors: Mapping[str, ConnectionSupervisor],
        registry: ToolRegistry,
        *,
        settings: Optional[BridgeSettings] = None,
        on_tool_start: Optional[ToolStartCallback] = None,
        on_tool_result: Optional[ToolResultCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.supervisors = supervisors
        self.registry = registry
        self.settings = settings or BridgeSettings()
        self.on_tool_start = on_tool_start
        self.on_tool_result = on_tool_result
        self.logger = logger or logging.getLogger(__name__)

    def resolve(self, instruction: Instruction) -> tuple[str, str]:
        """
        Normalize an instruction to ``(backend, tool)``.

        Raises:
            InvalidInstruction: the tool is empty, or the target is empty and
                the tool is not listed by exactly one backend.
        """
        tool = instruction.tool.strip()
        if not tool:
            raise InvalidInstruction("Instruction has no tool")

        backend = self.registry.canonical_name(instruction.target)
        if backend in UNSPECIFIED_TARGETS:
            candidates = self.registry.backends_for_tool(tool)
            if len(candidates) != 1:
                raise InvalidInstruction(
                    f"Instruction for {tool!r} names no backend and "
                    f"{len(candidates)} backends list it"
                )
            backend = candidates[0]
        return backend, tool

    async def dispatch(self, instruction: Optional[Instruction]) -> Optional[ToolResult]:
        """
        Execute one instruction.

        Returns None for a missing or invalid instruction (logged, never shown
        to the user) and a ToolResult for everything that reached routing.
        """
        if instruction is None:
            return None
        try:
            backend, tool = self.resolve(instruction)
        except InvalidInstruction as exc:
            self.logger.info("Ignoring instruction %s: %s", instruction, exc)
            return None

        started = time.monotonic()
        supervisor = self.supervisors.get(backend)
        if supervisor is None:
            error = UnknownBackend(f"Unknown backend {backend!r}", backend=backend)
            self.logger.warning("%s", error)
            result = self._failure(backend, tool, error, started)
            await self._notify(self.on_tool_result, backend, tool, result)
            return result

        await self._notify(self.on_tool_start, backend, tool)
        try:
            await supervisor.ensure_ready()
            if self.registry.catalog(backend) and self.registry.resolve(backend, tool) is None:
                self.logger.warning("%s is not in the %s catalog; calling it anyway", tool, backend)
            raw = await supervisor.call_tool(tool, instruction.params)
        except Exception as exc:
            error = classify_error(exc, self.logger, backend=backend)
            self.logger.warning("%s.%s failed with %s: %s", backend, tool, error.kind, error)
            result = self._failure(backend, tool, error, started)
        else:
            result = self._success(backend, tool, raw, started)
            self.logger.info("%s.%s succeeded in %.2fs", backend, tool, result.elapsed)

        await self._notify(self.on_tool_result, backend, tool, result)
        return result

    async def handle_response(self, response: Any) -> DispatchOutcome:
        """Extract, dispatch and clean in one step."""
        text = response_text(response)
        instruction = extract_instruction(response)
        if instruction is None:
            return DispatchOutcome(response=response, text=text)
        result = await self.dispatch(instruction)
        return DispatchOutcome(
            response=response,
            text=clean_response_text(text),
            instruction=instruction,
            result=result,
        )

    # --- helpers -----------------------------------------------------------
    def _success(self, backend: str, tool: str, raw: Any, started: float) -> ToolResult:
        payload = unwrap_content(raw)
        summary, entries = shape_result(
            payload,
            max_entries=self.settings.max_result_entries,
            max_chars=self.settings.max_text_chars,
        )
        return ToolResult(
            backend=backend,
            tool=tool,
            success=True,
            payload=payload,
            elapsed=time.monotonic() - started,
            summary=summary,
            entries=entries,
        )

    @staticmethod
    def _failure(backend: str, tool: str, error: ToolBridgeError, started: float) -> ToolResult:
        return ToolResult(
            backend=backend,
            tool=tool,
            success=False,
            error=str(error),
            error_kind=error.kind,
            elapsed=time.monotonic() - started,
        )

    async def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            self.logger.exception("Callback %r failed", callback)
