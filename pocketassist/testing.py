"""Test helpers for reducers and adapters.

``ReducerTestHarness`` folds actions through a reducer synchronously, records
every published state and emitted effect, and can optionally perform the
pending effects through an adapter, one at a time, feeding the resulting
actions back. No event loop task or queue is involved, so runs are fully
deterministic.

Example::

    harness = ReducerTestHarness(ChatReducer)

    harness.send(InputChanged(new_input="hello"))
    state, effects = harness.send(SendTapped())
    assert isinstance(effects[0], GenerateResponse)

    # Perform effects with a fake model and apply what they yield
    await harness.drain(ChatAdapter(FakeModel(["he", "hello"])))
    assert harness.state.messages[-1].status.kind == "finished"

    # What-if reduction (does not mutate harness state)
    state, effects = harness.simulate(SendTapped())
"""

from __future__ import annotations

from collections import deque
from typing import Any, Generic, Iterable, Type, TypeVar

from pocketassist.model import Adapter, Reducer

R = TypeVar("R", bound=Reducer)


class ReducerTestHarness(Generic[R]):
    """In-memory reducer harness.

    Supports:
    - ``send`` / ``send_all``: reduce actions and record the results
    - ``simulate``: what-if reduction without mutating harness state
    - ``drain``: perform pending effects through an adapter until quiescent
    - ``states`` / ``effects`` / ``actions``: full history for assertions
    """

    def __init__(self, reducer: Type[R], initial_state: Any = None) -> None:
        self._reducer = reducer
        self._state = initial_state if initial_state is not None else reducer.initial_state()
        self.states: list[Any] = [self._state]
        self.actions: list[Any] = []
        self.effects: list[Any] = []
        self._pending: deque[Any] = deque()

    @property
    def state(self) -> Any:
        return self._state

    @property
    def pending_effects(self) -> list[Any]:
        return list(self._pending)

    def send(self, action: Any) -> tuple[Any, list[Any]]:
        new_state, effects = self._reducer.reduce(self._state, action)
        self._state = new_state
        self.actions.append(action)
        self.states.append(new_state)
        self.effects.extend(effects)
        self._pending.extend(effects)
        return new_state, effects

    def send_all(self, actions: Iterable[Any]) -> Any:
        for action in actions:
            self.send(action)
        return self._state

    def simulate(self, action: Any) -> tuple[Any, list[Any]]:
        return self._reducer.reduce(self._state, action)

    def effects_of_type(self, effect_type: type) -> list[Any]:
        return [e for e in self.effects if isinstance(e, effect_type)]

    async def drain(self, adapter: Adapter, max_effects: int = 1000) -> Any:
        """Perform pending effects in emission order, applying every yielded action.

        Effects the adapter does not act on are dropped.
        """
        performed = 0
        while self._pending:
            if performed >= max_effects:
                raise AssertionError(f"drain exceeded {max_effects} effects")
            effect = self._pending.popleft()
            performed += 1
            if not adapter.to_be_act_on(effect):
                continue
            async for action in adapter.act_on(effect):
                self.send(action)
        return self._state
