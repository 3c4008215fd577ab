import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, Callable, Generic, TypeVar

from pocketassist.model import ActionBase, Adapter, EffectBase

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=ActionBase)
F = TypeVar("F", bound=EffectBase)


class EffectExecutor(Generic[F, A]):
    """Runs adapter effect handlers as background tasks and feeds their actions back."""

    def __init__(
        self,
        adapter: Adapter,
        send: Callable[[A], None],
        on_effect_failed: Callable[[F, Exception], Awaitable[None]] | None = None,
        name: str = "effects",
    ) -> None:
        self._adapter = adapter
        self._send = send
        self._on_effect_failed = on_effect_failed
        self._name = name
        self._running_effects: dict[int, asyncio.Task] = {}
        self._next_id = 0
        self._running = False

    def to_be_act_on(self, effect: Any) -> bool:
        return self._adapter.to_be_act_on(effect)

    @property
    def running_count(self) -> int:
        return len(self._running_effects)

    async def start(self):
        self._running = True

    async def stop(self):
        """Cancel in-flight effects and wait for them to unwind."""
        self._running = False
        tasks = list(self._running_effects.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False

    def execute_effect(self, effect: F) -> asyncio.Task | None:
        """Start the handler for ``effect`` (fire-and-forget). Returns the task, if any."""
        if not self.to_be_act_on(effect):
            logger.debug(f"{self._name}: no handler work for {effect.type}")
            return None

        effect_id = self._next_id
        self._next_id += 1
        task = asyncio.create_task(
            self._run_effect(effect),
            name=f"{self._name}-{effect.type}-{effect_id}",
        )
        self._running_effects[effect_id] = task

        def _on_task_done(t: asyncio.Task) -> None:
            self._running_effects.pop(effect_id, None)
            try:
                t.result()
            except asyncio.CancelledError:
                pass  # Expected during shutdown
            except Exception as e:
                logger.exception(
                    f"Unhandled exception in effect task {t.get_name()}: {e}"
                )
                if self._on_effect_failed is not None:
                    asyncio.ensure_future(self._notify_failed(effect, e))

        task.add_done_callback(_on_task_done)
        return task

    async def _notify_failed(self, effect: F, exc: Exception) -> None:
        try:
            await self._on_effect_failed(effect, exc)  # type: ignore[misc]
        except Exception as e:
            logger.exception(f"on_effect_failed callback failed for {effect.type}: {e}")

    async def _run_effect(self, effect: F) -> None:
        gen = self._adapter.act_on(effect)
        try:
            async for action in gen:
                self._send(action)
        finally:
            await gen.aclose()

    async def wait_idle(self) -> None:
        """Wait until every effect started so far (and any they start) has finished."""
        while self._running_effects:
            await asyncio.gather(
                *list(self._running_effects.values()), return_exceptions=True
            )
