"""
Custom Commands Handler - Named shell templates run off the event loop.

Templates come from the [commands.templates] settings table:

    [commands.templates]
    f  = "plocate -i -- \"$1\" | head -20"
    fg = "rg --line-number --no-heading -S \"$1\" ~ | head -20"

Typing ":f invoice" runs `sh -c <template> -- invoice`, so the argument
lands in "$1" verbatim without disturbing the template's own quoting.

Each keystroke re-arms a debounce timer; only the last keystroke in a
quiet period actually spawns a process. Lifecycle per handler:

    Idle -> Pending(generation, timer) -> Running(generation) -> Delivered/Discarded

Superseded output is not killed, it is delivered with its old generation
and the dispatcher drops it.
"""

import asyncio
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from sifter.errors import BackendExecutionError, ConfigurationError
from sifter.search.router import CommandResult

Deliver = Callable[[int, list], None]


@dataclass(frozen=True)
class PendingInvocation:
    """The single armed debounce timer of a handler."""
    generation: int
    cancel_handle: asyncio.TimerHandle


def run_template(template: str, argument: str, timeout: float = 10.0) -> list[str]:
    """
    Run a shell template with the argument bound to $1.

    Returns:
        Non-empty stdout lines. Undecodable bytes are replaced with U+FFFD.

    Raises:
        BackendExecutionError: Spawn failure, timeout or non-zero exit
    """
    argv = ["sh", "-c", template, "--", argument]
    try:
        completed = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise BackendExecutionError(f"timed out after {timeout}s: {template}") from e
    except OSError as e:
        raise BackendExecutionError(f"failed to spawn shell: {e}") from e

    if completed.returncode != 0:
        stderr = completed.stderr.decode("utf-8", errors="replace").strip()
        raise BackendExecutionError(
            f"exit status {completed.returncode}: {template}" + (f" ({stderr[:200]})" if stderr else "")
        )

    output = completed.stdout.decode("utf-8", errors="replace")
    return [line for line in output.splitlines() if line.strip()]


class CustomCommandsHandler:
    """Debounced execution of named shell templates."""

    name = "commands"

    def __init__(
        self,
        templates: dict,
        debounce_ms: int = 300,
        timeout_s: float = 10.0,
        max_results: int = 64,
        runner: Callable[[str, str, float], list] = run_template,
    ):
        self.templates = dict(templates)
        self.debounce_ms = debounce_ms
        self.timeout_s = timeout_s
        self.max_results = max_results
        self._runner = runner
        self._pending: Optional[PendingInvocation] = None
        self._running: Optional[int] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> str:
        """idle, pending or running."""
        if self._pending is not None:
            return "pending"
        if self._running is not None:
            return "running"
        return "idle"

    def resolve(self, name: str) -> str:
        """
        Template registered for a command name.

        Raises:
            ConfigurationError: If no template has that name
        """
        try:
            return self.templates[name]
        except KeyError:
            raise ConfigurationError(f"unknown command ':{name}'") from None

    def schedule(
        self,
        generation: int,
        name: str,
        argument: str,
        deliver: Deliver,
        loop: asyncio.AbstractEventLoop,
        executor=None,
    ) -> bool:
        """
        Arm (or re-arm) the debounce timer for a command invocation.

        Must be called on the event loop thread.

        Returns:
            False if the command name is unknown (an empty result is
            delivered immediately and nothing runs)
        """
        self.cancel()

        try:
            template = self.resolve(name)
        except ConfigurationError as e:
            logger.info(f"{e}, nothing to run")
            deliver(generation, [])
            return False

        return self.schedule_template(generation, template, argument, deliver, loop, executor)

    def schedule_template(
        self,
        generation: int,
        template: str,
        argument: str,
        deliver: Deliver,
        loop: asyncio.AbstractEventLoop,
        executor=None,
        wrap: Callable[[str], CommandResult] = CommandResult.from_line,
    ) -> bool:
        """
        Debounce an already resolved template.

        `wrap` turns each output line into a result; the vault commands
        use it to tag their results.
        """
        self.cancel()
        handle = loop.call_later(
            self.debounce_ms / 1000,
            self._fire,
            generation, template, argument, deliver, loop, executor, wrap,
        )
        self._pending = PendingInvocation(generation, handle)
        return True

    def cancel(self) -> None:
        """Disarm the pending timer, if any. Running processes are left alone."""
        if self._pending is not None:
            self._pending.cancel_handle.cancel()
            self._pending = None

    def cancel_all(self) -> None:
        """Disarm the timer and cancel every in-flight run (shutdown)."""
        self.cancel()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._running = None

    def _fire(self, generation, template, argument, deliver, loop, executor, wrap) -> None:
        self._pending = None
        self._running = generation
        task = loop.create_task(self._run(generation, template, argument, deliver, loop, executor, wrap))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, generation, template, argument, deliver, loop, executor, wrap) -> None:
        try:
            results = await loop.run_in_executor(executor, self.execute, template, argument, wrap)
        except asyncio.CancelledError:
            logger.debug(f"Command run for generation {generation} cancelled")
            raise
        except Exception:
            logger.exception(f"Unexpected failure running command for generation {generation}")
            results = []
        finally:
            if self._running == generation:
                self._running = None
        deliver(generation, results)

    def execute(
        self,
        template: str,
        argument: str,
        wrap: Callable[[str], CommandResult] = CommandResult.from_line,
    ) -> list[CommandResult]:
        """
        Run a template synchronously (worker thread) and wrap its output.

        Failures are logged and produce an empty list.
        """
        logger.debug(f"Running command template with argument {argument!r}")
        try:
            lines = self._runner(template, argument, self.timeout_s)
        except BackendExecutionError as e:
            logger.warning(f"Command failed: {e}")
            return []
        return [wrap(line) for line in lines[:self.max_results]]
