"""Chat workflow: user messages paired with streamed assistant answers.

Each send appends a user message and an assistant placeholder (``loading``).
The assistant entry then moves ``loading -> streaming -> finished | error``
exactly once. A new send is refused while any assistant entry is still
loading or streaming.
"""

import logging
import uuid
from abc import ABC
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from pocketassist.model import (
    ActionBase,
    Adapter,
    Analytics,
    EffectBase,
    Haptic,
    Reducer,
    StateBase,
    is_side_channel,
)
from pocketassist.streaming import (
    LanguageModel,
    StreamFailed,
    StreamFinished,
    StreamPartial,
    consume_stream,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Loading(_Frozen):
    kind: Literal["loading"] = "loading"


class Streaming(_Frozen):
    kind: Literal["streaming"] = "streaming"
    content: str


class Finished(_Frozen):
    kind: Literal["finished"] = "finished"
    content: str


class Failed(_Frozen):
    kind: Literal["error"] = "error"
    content: str | None = None


AssistantStatus = Annotated[
    Union[Loading, Streaming, Finished, Failed], Field(discriminator="kind")
]


class UserMessage(_Frozen):
    role: Literal["user"] = "user"
    id: str
    content: str


class AssistantMessage(_Frozen):
    role: Literal["assistant"] = "assistant"
    id: str
    status: AssistantStatus = Field(default_factory=Loading)

    @property
    def content(self) -> str | None:
        return getattr(self.status, "content", None)

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.status, (Finished, Failed))


ChatMessage = Annotated[
    Union[UserMessage, AssistantMessage], Field(discriminator="role")
]


class ChatMessagePairing(_Frozen):
    user: UserMessage
    assistant: AssistantMessage


class ChatState(StateBase):
    user_input: str = ""
    messages: tuple[ChatMessage, ...] = ()

    @property
    def assistant_messages(self) -> list[AssistantMessage]:
        return [m for m in self.messages if isinstance(m, AssistantMessage)]

    @property
    def can_send_message(self) -> bool:
        return bool(self.user_input) and all(
            m.is_terminal for m in self.assistant_messages
        )

    def find_assistant(self, assistant_id: str) -> tuple[int, AssistantMessage] | None:
        for i, m in enumerate(self.messages):
            if m.id == assistant_id and isinstance(m, AssistantMessage):
                return i, m
        return None


# ---------------------------------------------------------------------------
# Actions and effects
# ---------------------------------------------------------------------------


class ChatAction(ActionBase, ABC):
    pass


class OnAppear(ChatAction):
    type: Literal["on_appear"] = "on_appear"


class InputChanged(ChatAction):
    type: Literal["input_changed"] = "input_changed"
    new_input: str


class SendTapped(ChatAction):
    type: Literal["send_tapped"] = "send_tapped"
    # Ids are minted when the action is built so reduce() stays deterministic.
    user_message_id: str = Field(default_factory=_new_id)
    assistant_message_id: str = Field(default_factory=_new_id)


class AssistantStreamReceived(ChatAction):
    type: Literal["assistant_stream_received"] = "assistant_stream_received"
    pairing: ChatMessagePairing
    content: str


class AssistantStreamFinished(ChatAction):
    type: Literal["assistant_stream_finished"] = "assistant_stream_finished"
    pairing: ChatMessagePairing
    content: str


class AssistantStreamFailed(ChatAction):
    type: Literal["assistant_stream_failed"] = "assistant_stream_failed"
    pairing: ChatMessagePairing
    error: str | None = None


class GenerateResponse(EffectBase):
    type: Literal["generate_response"] = "generate_response"
    pairing: ChatMessagePairing


ChatEffect = Union[GenerateResponse, Haptic, Analytics]


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


class ChatReducer(Reducer[ChatAction, ChatEffect, ChatState]):
    @classmethod
    def name(cls) -> str:
        return "chat"

    @classmethod
    def initial_state(cls) -> ChatState:
        return ChatState()

    @classmethod
    def reduce(
        cls, state: ChatState, action: ChatAction
    ) -> tuple[ChatState, list[ChatEffect]]:
        if isinstance(action, OnAppear):
            return state, []

        if isinstance(action, InputChanged):
            return state.model_copy(update={"user_input": action.new_input}), []

        if isinstance(action, SendTapped):
            if not state.can_send_message:
                logger.debug("send rejected: empty input or an answer is still in flight")
                return state, []
            user = UserMessage(id=action.user_message_id, content=state.user_input)
            assistant = AssistantMessage(id=action.assistant_message_id)
            new_state = state.model_copy(
                update={
                    "messages": state.messages + (user, assistant),
                    "user_input": "",
                }
            )
            pairing = ChatMessagePairing(user=user, assistant=assistant)
            return new_state, [
                GenerateResponse(pairing=pairing),
                Analytics(event="message_sent"),
            ]

        if isinstance(action, AssistantStreamReceived):
            return cls._update_assistant(
                state, action.pairing, lambda m: Streaming(content=action.content)
            ), []

        if isinstance(action, AssistantStreamFinished):
            return cls._update_assistant(
                state, action.pairing, lambda m: Finished(content=action.content)
            ), [Haptic(pattern="success")]

        if isinstance(action, AssistantStreamFailed):
            return cls._update_assistant(
                state, action.pairing, lambda m: Failed(content=m.content)
            ), [Haptic(pattern="error")]

        logger.warning(f"chat: unhandled action {action.type}")
        return state, []

    @staticmethod
    def _update_assistant(state: ChatState, pairing: ChatMessagePairing, make_status) -> ChatState:
        found = state.find_assistant(pairing.assistant.id)
        if found is None:
            logger.debug(f"Ignoring result for unknown assistant message {pairing.assistant.id}")
            return state
        index, message = found
        if message.is_terminal:
            logger.debug(f"Ignoring late result for settled message {message.id}")
            return state
        updated = message.model_copy(update={"status": make_status(message)})
        messages = state.messages[:index] + (updated,) + state.messages[index + 1 :]
        return state.model_copy(update={"messages": messages})


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class ChatAdapter(Adapter[ChatEffect, ChatAction]):
    def __init__(self, model: LanguageModel) -> None:
        self._model = model

    def to_be_act_on(self, effect: Any) -> bool:
        return not is_side_channel(effect)

    async def _prompt_stream(self, prompt: str) -> AsyncIterator[str]:
        # Defers model.stream() so a failure to start is reported like any other.
        async for text in self._model.stream(prompt):
            yield text

    async def act_on(self, effect: ChatEffect) -> AsyncGenerator[ChatAction, None]:
        if not isinstance(effect, GenerateResponse):
            return
        pairing = effect.pairing
        stream = self._prompt_stream(pairing.user.content)
        async for result in consume_stream(pairing.assistant.id, stream):
            if isinstance(result, StreamPartial):
                yield AssistantStreamReceived(pairing=pairing, content=result.text)
            elif isinstance(result, StreamFinished):
                yield AssistantStreamFinished(pairing=pairing, content=result.text)
            elif isinstance(result, StreamFailed):
                yield AssistantStreamFailed(pairing=pairing, error=result.error)
