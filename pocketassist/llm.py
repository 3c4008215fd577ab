"""Language model backed by LiteLLM.

Any provider LiteLLM supports can be used (OpenAI, Anthropic, Gemini, Ollama
for local models, ...). API keys come from the environment following LiteLLM
conventions. When tools are configured, a bounded non-streaming tool round is
run first and the final answer is then streamed.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

from pocketassist.streaming import accumulate

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 4

DEFAULT_INSTRUCTIONS = (
    "You are a warm, practical assistant. Meet people where they are and help "
    "them with whatever reasonable request they bring. When asked about free "
    "time, use the find_free_time tool instead of guessing."
)


class Tool(Protocol):
    name: str

    def schema(self) -> dict[str, Any]: ...

    async def call(self, arguments: dict[str, Any]) -> str: ...


class LiteLLMLanguageModel:
    def __init__(
        self,
        model: str,
        instructions: str | None = DEFAULT_INSTRUCTIONS,
        tools: Sequence[Tool] = (),
        temperature: float = 0.3,
        api_base: str | None = None,
        max_tool_iterations: int = MAX_TOOL_ITERATIONS,
    ) -> None:
        self.model = model
        self.instructions = instructions
        self.temperature = temperature
        self.api_base = api_base
        self.max_tool_iterations = max_tool_iterations
        self._tools = {t.name: t for t in tools}

    def _base_kwargs(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    def _messages(self, prompt: str) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if self.instructions:
            messages.append({"role": "system", "content": self.instructions})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        import litellm

        litellm.drop_params = True
        messages = self._messages(prompt)
        if self._tools:
            await self._run_tools(messages)

        logger.info(f"LLM streaming: model={self.model}, msgs={len(messages)}")
        response = await litellm.acompletion(**self._base_kwargs(messages), stream=True)
        async for text in accumulate(self._deltas(response)):
            yield text

    @staticmethod
    async def _deltas(response: Any) -> AsyncIterator[str]:
        async for chunk in response:
            if not chunk.choices:
                continue
            text = getattr(chunk.choices[0].delta, "content", None)
            if text:
                yield text

    async def _run_tools(self, messages: list[dict[str, Any]]) -> None:
        """Let the model call tools until it stops asking; appends to ``messages``."""
        import litellm

        schemas = [t.schema() for t in self._tools.values()]
        for _ in range(self.max_tool_iterations):
            response = await litellm.acompletion(
                **self._base_kwargs(messages), tools=schemas
            )
            message = response.choices[0].message
            tool_calls = getattr(message, "tool_calls", None)
            if not tool_calls:
                return

            messages.append(message.model_dump(exclude_none=True))
            for tc in tool_calls:
                fn_name = tc.function.name
                try:
                    fn_args = json.loads(tc.function.arguments or "{}")
                except json.JSONDecodeError:
                    fn_args = {}

                tool = self._tools.get(fn_name)
                if tool is None:
                    logger.warning(f"Model requested unknown tool {fn_name!r}")
                    result = f"Unknown tool: {fn_name}"
                else:
                    logger.info(f"Running tool {fn_name} with {fn_args}")
                    result = await tool.call(fn_args)

                messages.append(
                    {"role": "tool", "tool_call_id": tc.id, "content": result}
                )
        logger.warning(
            f"Tool loop stopped after {self.max_tool_iterations} iterations"
        )
