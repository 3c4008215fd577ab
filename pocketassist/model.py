from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Iterable
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict


class _TaggedModel(BaseModel):
    """Frozen model whose concrete subclasses must pin ``type`` to a Literal."""

    model_config = ConfigDict(frozen=True)

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        # Abstract families (ChatAction, MailAction, ...) are declared with ABC.
        if ABC in cls.__bases__:
            return

        annotation = cls.__annotations__.get("type")
        if annotation is None:
            model_fields = getattr(cls, "model_fields", {})
            type_field = model_fields.get("type")
            if type_field is not None and not type_field.is_required():
                return
            raise TypeError(
                f"{cls.__name__} must override `type` with a Literal[...] default."
            )


class ActionBase(_TaggedModel, ABC):
    """An event folded into state by a reducer. Consumed exactly once."""


class EffectBase(_TaggedModel, ABC):
    """Work requested by a reduction; performed by an adapter, never by the reducer."""


class Haptic(EffectBase):
    """Side-channel feedback request. Adapters accept and ignore it."""

    type: Literal["haptic"] = "haptic"
    pattern: str = "success"


class Analytics(EffectBase):
    """Side-channel analytics event. Adapters accept and ignore it."""

    type: Literal["analytics"] = "analytics"
    event: str


def is_side_channel(effect: Any) -> bool:
    return isinstance(effect, (Haptic, Analytics))


class StateBase(BaseModel):
    model_config = ConfigDict(frozen=True)


A = TypeVar("A", bound=ActionBase)
F = TypeVar("F", bound=EffectBase)
S = TypeVar("S", bound=StateBase)


class Reducer(Generic[A, F, S], ABC):
    @classmethod
    @abstractmethod
    def name(cls) -> str:
        pass

    @classmethod
    @abstractmethod
    def initial_state(cls) -> S:
        pass

    @classmethod
    @abstractmethod
    def reduce(cls, state: S, action: A) -> tuple[S, list[F]]:
        """Fold one action into state. Must not perform I/O or await."""
        pass

    @classmethod
    def reduce_all(cls, state: S, actions: Iterable[A]) -> tuple[S, list[F]]:
        """Fold a sequence of actions, collecting effects in emission order."""
        effects: list[F] = []
        for action in actions:
            state, emitted = cls.reduce(state, action)
            effects.extend(emitted)
        return state, effects


class Adapter(Generic[F, A], ABC):
    @abstractmethod
    async def act_on(self, effect: F) -> AsyncGenerator[A, None]:
        """
        Perform an effect and yield zero or more actions back into the loop.

        Collaborator failures must be turned into failure actions here; an
        exception escaping ``act_on`` is only logged by the executor.
        """
        if False:
            yield  # make this an async generator; subclasses override and yield actions

    @abstractmethod
    def to_be_act_on(self, effect: Any) -> bool:
        pass
