"""Hook dispatcher: ordered side effects at lifecycle events."""

import asyncio
import inspect
import json
import os
from typing import Any, Dict, List, Optional, Union
from loguru import logger

from ..errors import HookError
from .definition import (
    CallbackAction,
    HookDispatchResult,
    HookEvent,
    HookFailure,
    HookSpec,
    ShellAction,
    coerce_event,
)


class _HandlerFailed(Exception):
    def __init__(self, message: str, output: Optional[str] = None):
        super().__init__(message)
        self.output = output


class HookDispatcher:
    """Registry of event name -> ordered handler specs."""

    def __init__(self, default_timeout: float = 30.0):
        self.default_timeout = default_timeout
        self._handlers: Dict[HookEvent, List[HookSpec]] = {}

    def register(self, event: Union[str, HookEvent], spec: HookSpec) -> "HookDispatcher":
        event = coerce_event(event)
        self._handlers.setdefault(event, []).append(spec)
        logger.debug(f"[HOOK] Registered {spec.label} for '{event.value}'")
        return self

    def handlers(self, event: Union[str, HookEvent]) -> List[HookSpec]:
        return list(self._handlers.get(coerce_event(event), []))

    def has_handlers(self, event: Union[str, HookEvent], extra: Optional[List[HookSpec]] = None) -> bool:
        return bool(self._handlers.get(coerce_event(event))) or bool(extra)

    async def dispatch(
        self,
        event: Union[str, HookEvent],
        payload: Dict[str, Any],
        extra: Optional[List[HookSpec]] = None
    ) -> HookDispatchResult:
        """Run handlers for ``event`` strictly in registration order.

        Swarm-wide handlers run first, then ``extra`` (agent-scoped) ones.

        Raises:
            HookError: When a ``stop_on_error`` handler fails; remaining
                handlers are not run.
        """
        event = coerce_event(event)
        result = HookDispatchResult(event=event)
        specs = self._handlers.get(event, []) + list(extra or [])

        for spec in specs:
            if not spec.matches(payload):
                continue
            try:
                output = await self._run(spec, event, payload)
            except _HandlerFailed as e:
                if spec.stop_on_error:
                    logger.error(f"[HOOK] {spec.label} failed on '{event.value}', aborting: {e}")
                    raise HookError(event.value, str(e), output=e.output) from e
                logger.warning(f"[HOOK] {spec.label} failed on '{event.value}' (ignored): {e}")
                result.failures.append(HookFailure(hook=spec.label, message=str(e)))
                continue

            if output:
                result.outputs.append(output)
                if spec.append_output_to_context:
                    result.context_additions.append(output)

        return result

    async def _run(self, spec: HookSpec, event: HookEvent, payload: Dict[str, Any]) -> Optional[str]:
        timeout = spec.timeout_seconds or self.default_timeout
        if isinstance(spec.action, ShellAction):
            return await self._run_shell(spec.action, event, payload, timeout)
        if isinstance(spec.action, CallbackAction):
            return await self._run_callback(spec.action, event, payload, timeout)
        raise TypeError(f"Unsupported hook action: {type(spec.action).__name__}")

    async def _run_callback(
        self,
        action: CallbackAction,
        event: HookEvent,
        payload: Dict[str, Any],
        timeout: float
    ) -> Optional[str]:
        try:
            value = action.fn(event.value, payload)
            if inspect.isawaitable(value):
                value = await asyncio.wait_for(value, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise _HandlerFailed(f"callback timed out after {timeout}s") from e
        except Exception as e:
            raise _HandlerFailed(f"{type(e).__name__}: {e}") from e

        if value is None:
            return None
        return str(value).strip() or None

    async def _run_shell(
        self,
        action: ShellAction,
        event: HookEvent,
        payload: Dict[str, Any],
        timeout: float
    ) -> Optional[str]:
        env = dict(os.environ)
        env["NODESWARM_HOOK_EVENT"] = event.value
        data = json.dumps({"event": event.value, **payload}, default=str).encode()

        process = await asyncio.create_subprocess_shell(
            action.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(data), timeout=timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise _HandlerFailed(f"command timed out after {timeout}s") from e

        output = stdout.decode(errors="replace").strip() or None
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or output or "no output"
            raise _HandlerFailed(f"exit status {process.returncode}: {detail}", output=output)
        return output
