"""
Tests for pocketassist.model module.
"""

from abc import ABC
from typing import Literal

import pytest
from pydantic import ValidationError

from pocketassist.chat import ChatReducer, ChatState, InputChanged, OnAppear
from pocketassist.model import ActionBase, Analytics, EffectBase, Haptic, is_side_channel


class TestTaggedModels:
    """Tests for the ``type`` discipline on actions and effects."""

    def test_subclass_without_type_literal_is_rejected(self):
        """A concrete action must pin ``type``."""
        with pytest.raises(TypeError, match="must override `type`"):

            class Untyped(ActionBase):
                value: int = 0

    def test_abstract_family_does_not_need_type(self):
        """Families declared with ABC are exempt."""

        class Family(EffectBase, ABC):
            pass

        class Concrete(Family):
            type: Literal["concrete"] = "concrete"

        assert Concrete().type == "concrete"

    def test_actions_are_frozen(self):
        action = InputChanged(new_input="hi")
        with pytest.raises(ValidationError):
            action.new_input = "changed"

    def test_side_channel_effects(self):
        assert is_side_channel(Haptic())
        assert is_side_channel(Analytics(event="x"))
        assert not is_side_channel(OnAppear())


class TestReducerBase:
    def test_reduce_all_collects_effects_in_order(self):
        """reduce_all folds left and keeps emission order."""
        state, effects = ChatReducer.reduce_all(
            ChatReducer.initial_state(),
            [InputChanged(new_input="a"), InputChanged(new_input="ab")],
        )
        assert state == ChatState(user_input="ab")
        assert effects == []

    def test_reducer_is_deterministic(self):
        action = InputChanged(new_input="same")
        first = ChatReducer.reduce(ChatState(), action)
        second = ChatReducer.reduce(ChatState(), action)
        assert first == second
