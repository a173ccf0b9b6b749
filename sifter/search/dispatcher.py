"""
Query Dispatcher - Routes each query to its backend and delivers results.

Every submit() bumps the generation counter and tags all work started
for that query with it. Backends run on a worker thread pool; their
results come back to the event loop, where any batch whose generation
is not the latest one is dropped before subscribers see it. That check
is the only cancellation mechanism: superseded work is allowed to finish,
its output just goes nowhere.

The generation counter, the subscriber list and the debounce timers are
only touched on the event loop thread. Workers receive the generation as
a plain value and never read the counter.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from loguru import logger

from sifter.errors import ConfigurationError
from sifter.search.router import (
    AppResult,
    AppSearch,
    CalcResult,
    Calculator,
    Command,
    CommandResult,
    ErrorResult,
    ProviderResult,
    VaultResult,
    detect_mode,
)
from sifter.utils.helpers import launch_entry, open_command_result

Subscriber = Callable[[int, list], None]


class QueryDispatcher:
    """
    Orchestrates mode detection, backend execution and result delivery.

    Usage:
        dispatcher = QueryDispatcher(settings, app_search, calculator, commands, providers)
        dispatcher.subscribe(lambda generation, results: render(generation, results))
        generation = dispatcher.submit("fir")
    """

    def __init__(
        self,
        settings,
        app_search,
        calculator,
        commands,
        providers=None,
        vault=None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.settings = settings
        self.app_search = app_search
        self.calculator = calculator
        self.commands = commands
        self.providers = providers
        self.vault = vault

        self._loop = loop
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="sifter-worker",
        )
        self._generation = 0
        self._subscribers: list[Subscriber] = []
        self._provider_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: set = set()

    async def start(self) -> None:
        """
        Warm the caches a first query would otherwise pay for.

        Loads (or builds) the application index and discovers search
        providers on a worker, so the first ":s" search only spends its
        time budget on the bus calls themselves.
        """
        loop = self._get_loop()
        warmups = [self.app_search.index_service.load_or_build]
        if self.providers is not None:
            warmups.append(self.providers.discover)
        await asyncio.gather(*(loop.run_in_executor(self._executor, fn) for fn in warmups))

    @property
    def generation(self) -> int:
        """The latest submitted generation."""
        return self._generation

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a (generation, results) consumer.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def submit(self, text: str) -> int:
        """
        Start a new query. Must be called on the event loop thread.

        Returns:
            The generation assigned to this query
        """
        loop = self._get_loop()
        self._generation += 1
        generation = self._generation
        self._cancel_timers()

        mode = detect_mode(text, self.settings.calculator_enabled)
        logger.debug(f"Query {generation}: {mode}")

        if isinstance(mode, AppSearch):
            self._spawn(loop, generation, self.app_search.get_results, mode.text)
        elif isinstance(mode, Calculator):
            self._spawn(loop, generation, self.calculator.get_results, mode.text)
        elif isinstance(mode, Command):
            self._dispatch_command(loop, generation, mode)

        return generation

    def _dispatch_command(self, loop, generation: int, mode: Command) -> None:
        if self.providers is not None and mode.name == self.settings.provider_command:
            if not mode.argument:
                self._deliver(generation, [])
                return
            self._provider_timer = loop.call_later(
                self.settings.provider_debounce_ms / 1000,
                self._start_provider_search,
                loop, generation, mode.argument,
            )
            return

        if self.vault is not None and self.vault.handles(mode.name):
            self._dispatch_vault(loop, generation, mode)
            return

        if not mode.argument:
            # ":f" with nothing typed yet, or a bare ":"
            self._deliver(generation, [])
            return

        self.commands.schedule(
            generation, mode.name, mode.argument, self._deliver, loop, self._executor,
        )

    def _dispatch_vault(self, loop, generation: int, mode: Command) -> None:
        try:
            template = self.vault.template(mode.name)
        except ConfigurationError as e:
            logger.info(f"Vault command unavailable: {e}")
            self._deliver(generation, [ErrorResult(str(e))])
            return

        if not mode.argument:
            self._deliver(generation, [])
            return

        self.commands.schedule_template(
            generation, template, mode.argument, self._deliver, loop, self._executor,
            wrap=self.vault.wrap,
        )

    def _start_provider_search(self, loop, generation: int, argument: str) -> None:
        self._provider_timer = None
        self._spawn(loop, generation, self.providers.search, argument, self.settings.max_results)

    def _spawn(self, loop, generation: int, fn, *args) -> None:
        task = loop.create_task(self._run(loop, generation, fn, *args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, loop, generation: int, fn, *args) -> None:
        try:
            results = await loop.run_in_executor(self._executor, fn, *args)
        except Exception:
            # One backend failing must not take the dispatcher down with it
            logger.exception(f"Backend {getattr(fn, '__qualname__', fn)} failed for query {generation}")
            results = []
        self._deliver(generation, results)

    def _deliver(self, generation: int, results: list) -> bool:
        """
        Hand a result batch to subscribers if it is still current.

        Returns:
            False if the batch was stale and dropped
        """
        if generation != self._generation:
            logger.debug(f"Dropping {len(results)} results for stale query {generation} "
                         f"(current {self._generation})")
            return False

        results = list(results)[:self.settings.max_results]
        for callback in list(self._subscribers):
            try:
                callback(generation, results)
            except Exception:
                logger.exception("Result subscriber raised")
        return True

    def activate(self, result) -> bool:
        """
        Perform a result's default action.

        Returns:
            True if an action was started
        """
        if isinstance(result, AppResult):
            return launch_entry(result.entry, self.settings.terminal)
        if isinstance(result, ProviderResult) and self.providers is not None:
            self.providers.activate(result)
            return True
        if isinstance(result, CalcResult) and result.ok:
            self.calculator.copy_to_clipboard(result)
            return True
        if isinstance(result, VaultResult) and self.vault is not None:
            return self.vault.open_result(result)
        if isinstance(result, CommandResult):
            return open_command_result(result)
        logger.debug(f"No default action for {result.result_type} result")
        return False

    def refresh_index(self) -> asyncio.Future:
        """Revalidate the application index on a worker; rebuilds if stale."""
        loop = self._get_loop()
        return loop.run_in_executor(self._executor, self.app_search.index_service.refresh)

    def close(self) -> None:
        """Disarm timers, stop accepting work and release the worker pool."""
        self._cancel_timers()
        self.commands.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        if self.providers is not None:
            self.providers.close()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _cancel_timers(self) -> None:
        self.commands.cancel()
        if self._provider_timer is not None:
            self._provider_timer.cancel()
            self._provider_timer = None

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop
