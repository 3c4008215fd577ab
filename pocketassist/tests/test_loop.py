"""
Tests for pocketassist.loop and pocketassist.effects modules.
"""

import asyncio
from typing import Any, Literal

import pytest

from pocketassist.chat import (
    ChatAdapter,
    ChatReducer,
    InputChanged,
    SendTapped,
)
from pocketassist.effects import EffectExecutor
from pocketassist.loop import ReducerLoop
from pocketassist.model import ActionBase, Adapter, EffectBase, Haptic, Reducer, StateBase
from pocketassist.tests.conftest import FakeLanguageModel


class Add(ActionBase):
    type: Literal["add"] = "add"
    value: int


class Boom(ActionBase):
    type: Literal["boom"] = "boom"


class Echo(EffectBase):
    type: Literal["echo"] = "echo"
    value: int


class CounterState(StateBase):
    total: int = 0
    seen: tuple[int, ...] = ()


class CounterReducer(Reducer[ActionBase, Echo, CounterState]):
    """Adds values; positive values echo back as their negation once."""

    @classmethod
    def name(cls) -> str:
        return "counter"

    @classmethod
    def initial_state(cls) -> CounterState:
        return CounterState()

    @classmethod
    def reduce(cls, state, action):
        if isinstance(action, Boom):
            raise ValueError("cannot reduce boom")
        new = CounterState(total=state.total + action.value, seen=state.seen + (action.value,))
        effects = [Echo(value=-action.value)] if action.value > 0 else []
        return new, effects


class EchoAdapter(Adapter[Echo, Add]):
    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.started = asyncio.Event()

    def to_be_act_on(self, effect: Any) -> bool:
        return isinstance(effect, Echo)

    async def act_on(self, effect: Echo):
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("adapter exploded")
        yield Add(value=effect.value)


class TestReducerLoop:
    @pytest.mark.asyncio
    async def test_actions_are_reduced_in_send_order(self):
        async with ReducerLoop(CounterReducer, EchoAdapter()) as loop:
            for v in (-1, -2, -3):
                loop.send(Add(value=v))
            await loop.join()

        assert loop.state.seen == (-1, -2, -3)
        assert loop.processed_count == 3

    @pytest.mark.asyncio
    async def test_effects_feed_actions_back(self):
        async with ReducerLoop(CounterReducer, EchoAdapter()) as loop:
            loop.send(Add(value=5))
            state = await loop.wait_until(lambda s: len(s.seen) == 2, timeout=1)

        assert state.seen == (5, -5)
        assert state.total == 0

    @pytest.mark.asyncio
    async def test_observers_see_every_published_snapshot(self):
        seen: list[tuple[int, str]] = []
        async with ReducerLoop(CounterReducer, EchoAdapter()) as loop:
            loop.subscribe(lambda state, action: seen.append((state.total, action.type)))
            loop.send(Add(value=-1))
            loop.send(Add(value=-2))
            await loop.join()

        assert seen == [(-1, "add"), (-3, "add")]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        seen = []
        async with ReducerLoop(CounterReducer, EchoAdapter()) as loop:
            unsubscribe = loop.subscribe(lambda state, action: seen.append(state.total))
            loop.send(Add(value=-1))
            await loop.join()
            unsubscribe()
            loop.send(Add(value=-1))
            await loop.join()

        assert seen == [-1]

    @pytest.mark.asyncio
    async def test_failing_reducer_keeps_state(self):
        async with ReducerLoop(CounterReducer, EchoAdapter()) as loop:
            loop.send(Add(value=-1))
            loop.send(Boom())
            loop.send(Add(value=-2))
            await loop.join()

        assert loop.state.total == -3
        assert loop.processed_count == 2

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_stop_the_loop(self):
        def bad_observer(state, action):
            raise RuntimeError("observer bug")

        async with ReducerLoop(CounterReducer, EchoAdapter()) as loop:
            loop.subscribe(bad_observer)
            loop.send(Add(value=-4))
            await loop.join()

        assert loop.state.total == -4

    @pytest.mark.asyncio
    async def test_wait_until_times_out(self):
        async with ReducerLoop(CounterReducer, EchoAdapter()) as loop:
            with pytest.raises(asyncio.TimeoutError):
                await loop.wait_until(lambda s: s.total == 99, timeout=0.05)

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_effects(self):
        adapter = EchoAdapter(delay=10)
        loop = ReducerLoop(CounterReducer, adapter)
        await loop.start()
        loop.send(Add(value=1))
        await asyncio.wait_for(adapter.started.wait(), timeout=1)
        assert loop.executor.running_count == 1

        await loop.stop()

        assert loop.executor.running_count == 0
        assert loop.state.seen == (1,)

    @pytest.mark.asyncio
    async def test_effect_failure_reported(self):
        failures = []

        async def on_failed(effect, exc):
            failures.append((effect, str(exc)))

        async with ReducerLoop(
            CounterReducer, EchoAdapter(fail=True), on_effect_failed=on_failed
        ) as loop:
            loop.send(Add(value=2))
            await loop.join()
            await asyncio.sleep(0)

        assert failures == [(Echo(value=-2), "adapter exploded")]
        assert loop.state.seen == (2,)

    @pytest.mark.asyncio
    async def test_chat_end_to_end(self):
        model = FakeLanguageModel(["Hi", "Hi there"], delay=0.001)
        async with ReducerLoop(ChatReducer, ChatAdapter(model)) as loop:
            loop.send(InputChanged(new_input="hello"))
            send = SendTapped()
            loop.send(send)
            # A second send while streaming is refused.
            loop.send(InputChanged(new_input="again"))
            loop.send(SendTapped())

            def settled(state):
                found = state.find_assistant(send.assistant_message_id)
                return found is not None and found[1].is_terminal

            state = await loop.wait_until(settled, timeout=1)

        assert state.messages[-1].content == "Hi there"
        assert len(state.messages) == 2


class TestEffectExecutor:
    @pytest.mark.asyncio
    async def test_skips_effects_adapter_does_not_handle(self):
        sent = []
        executor = EffectExecutor(EchoAdapter(), sent.append)

        assert executor.execute_effect(Haptic()) is None
        task = executor.execute_effect(Echo(value=3))
        await task

        assert sent == [Add(value=3)]
        assert executor.running_count == 0
