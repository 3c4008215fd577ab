"""Single-consumer action loop driving a reducer.

Any coroutine on the loop's event loop may ``send`` actions. The loop drains
them strictly one at a time: reduce, publish the new snapshot to observers,
then hand each effect, in order, to the effect executor. Effect handlers talk
back only by sending further actions.

Example::

    async with ReducerLoop(ChatReducer, ChatAdapter(model)) as loop:
        loop.subscribe(lambda state, action: render(state))
        loop.send(InputChanged(new_input="hi"))
        loop.send(SendTapped())
        await loop.wait_until(lambda s: s.can_send_message or ..., timeout=30)
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Callable, Generic, Type, TypeVar

from pocketassist.effects import EffectExecutor
from pocketassist.model import ActionBase, Adapter, EffectBase, Reducer, StateBase

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=ActionBase)
F = TypeVar("F", bound=EffectBase)
S = TypeVar("S", bound=StateBase)

Observer = Callable[[S, A], None]


class ReducerLoop(Generic[A, F, S]):
    def __init__(
        self,
        reducer: Type[Reducer],
        adapter: Adapter,
        initial_state: S | None = None,
        on_effect_failed: Callable[[F, Exception], Awaitable[None]] | None = None,
    ) -> None:
        self._reducer = reducer
        self._state: S = (
            initial_state if initial_state is not None else reducer.initial_state()
        )
        self._queue: asyncio.Queue[A] = asyncio.Queue()
        self._observers: list[Observer] = []
        self._executor: EffectExecutor[F, A] = EffectExecutor(
            adapter, self.send, on_effect_failed=on_effect_failed, name=reducer.name()
        )
        self._task: asyncio.Task | None = None
        self._running = False
        self._processed = 0

    @property
    def state(self) -> S:
        return self._state

    @property
    def processed_count(self) -> int:
        return self._processed

    @property
    def executor(self) -> EffectExecutor[F, A]:
        return self._executor

    def send(self, action: A) -> None:
        """Enqueue an action. Never blocks; the queue is unbounded."""
        self._queue.put_nowait(action)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer(state, action)``; returns an unsubscribe callable."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def process(self, action: A) -> tuple[S, list[F]]:
        """Apply one action: reduce, publish, dispatch effects."""
        old = self._state
        try:
            new, effects = self._reducer.reduce(old, action)
        except Exception as e:
            logger.exception(
                f"{self._reducer.name()}: reducing {action.type} failed, state kept: {e}"
            )
            return old, []

        self._state = new
        self._processed += 1
        self._notify(new, action)
        for effect in effects:
            self._executor.execute_effect(effect)
        return new, effects

    def _notify(self, state: S, action: A) -> None:
        for observer in list(self._observers):
            try:
                observer(state, action)
            except Exception as e:
                logger.exception(f"Observer {observer!r} raised: {e}")

    async def run(self) -> None:
        """Drain the queue until stopped."""
        self._running = True
        while self._running:
            action = await self._queue.get()
            try:
                self.process(action)
            finally:
                self._queue.task_done()

    async def start(self):
        if self._task is not None:
            return
        await self._executor.start()
        self._task = asyncio.create_task(self.run(), name=f"loop-{self._reducer.name()}")

    async def stop(self):
        """Stop draining and cancel in-flight effects."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._executor.stop()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False

    async def join(self) -> None:
        """Wait until the queue is empty and no effect is in flight."""
        while True:
            await self._queue.join()
            await self._executor.wait_idle()
            if self._queue.empty() and self._executor.running_count == 0:
                return

    async def wait_until(
        self, predicate: Callable[[S], bool], timeout: float | None = None
    ) -> S:
        """Resolve with the first published state satisfying ``predicate``."""
        if predicate(self._state):
            return self._state

        fut: asyncio.Future[S] = asyncio.get_running_loop().create_future()

        def _observer(state: S, action: A) -> None:
            if not fut.done() and predicate(state):
                fut.set_result(state)

        unsubscribe = self.subscribe(_observer)
        try:
            return await asyncio.wait_for(fut, timeout)
        finally:
            unsubscribe()
