"""Completion invoker: one chat-model call per round."""

from collections.abc import Sequence
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.runnables import RunnableConfig
from langchain_mistralai import ChatMistralAI
from loguru import logger

from .config import Settings
from .tools import TOOL_SCHEMAS


def create_chat_model(settings: Settings) -> ChatMistralAI:
    """Create the Mistral chat model from settings."""
    logger.info(
        "Initializing LLM: model={}, temperature={}",
        settings.mistral_model,
        settings.mistral_temperature,
    )
    return ChatMistralAI(
        model=settings.mistral_model,
        temperature=settings.mistral_temperature,
        api_key=settings.mistral_api_key,
    )


class CompletionInvoker:
    """Sends the message sequence to the chat model and returns its reply.

    Round 1 offers the ordering tools with automatic tool choice. Round 2
    offers none; it only narrates the tool results. Errors are not retried.
    """

    def __init__(
        self, chat_model: BaseChatModel, tools: Sequence[dict[str, Any]] = TOOL_SCHEMAS
    ) -> None:
        self._chat_model = chat_model
        self._with_tools = chat_model.bind_tools(list(tools), tool_choice="auto")

    def complete(
        self,
        messages: Sequence[BaseMessage],
        offer_tools: bool,
        config: RunnableConfig | None = None,
    ) -> AIMessage:
        runnable = self._with_tools if offer_tools else self._chat_model
        logger.debug(
            "Invoking LLM with {} messages (tools={})", len(messages), offer_tools
        )
        response = runnable.invoke(list(messages), config=config)
        if response.tool_calls:
            logger.info(
                "LLM requesting tools: {}", ", ".join(tc["name"] for tc in response.tool_calls)
            )
        else:
            logger.info("LLM responding directly (no tool calls)")
        return response
