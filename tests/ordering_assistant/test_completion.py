"""Tests for the completion invoker, chat model factory and prompt helpers.

A fake LangChain chat model stands in for Mistral, so no API calls are made.
"""

from typing import Any

from langchain_core.language_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage
from pydantic import Field

from ordering_assistant.completion import CompletionInvoker, create_chat_model
from ordering_assistant.config import Settings
from ordering_assistant.models import Menu
from ordering_assistant.prompts import (
    FALLBACK_SYSTEM_PROMPT,
    format_menu_context,
    load_system_prompt,
)
from ordering_assistant.tools import TOOL_SCHEMAS


class ToolRecordingFakeModel(GenericFakeChatModel):
    """Fake chat model that supports bind_tools and records call kwargs."""

    bound_tools: list = Field(default_factory=list)
    bound_tool_choice: str | None = None
    seen_kwargs: list = Field(default_factory=list)

    def bind_tools(self, tools, *, tool_choice: str | None = None, **kwargs: Any):
        self.bound_tools = list(tools)
        self.bound_tool_choice = tool_choice
        return self.bind(tools=tools, tool_choice=tool_choice, **kwargs)

    def _generate(self, messages, stop=None, run_manager=None, **kwargs: Any):
        self.seen_kwargs.append(kwargs)
        return super()._generate(messages, stop=stop, run_manager=run_manager, **kwargs)


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, mistral_api_key="test-key", **overrides)


class TestCompletionInvoker:
    def test_binds_all_tools_with_auto_choice(self):
        fake = ToolRecordingFakeModel(messages=iter([]))
        CompletionInvoker(fake)
        assert fake.bound_tools == TOOL_SCHEMAS
        assert fake.bound_tool_choice == "auto"

    def test_first_round_offers_tools(self):
        fake = ToolRecordingFakeModel(
            messages=iter(
                [
                    AIMessage(
                        content="",
                        tool_calls=[{"id": "c1", "name": "clear_basket", "args": {}}],
                    )
                ]
            )
        )
        response = CompletionInvoker(fake).complete([HumanMessage(content="clear it")], True)
        assert response.tool_calls[0]["name"] == "clear_basket"
        assert "tools" in fake.seen_kwargs[0]

    def test_second_round_offers_no_tools(self):
        fake = ToolRecordingFakeModel(messages=iter(["All done."]))
        response = CompletionInvoker(fake).complete([HumanMessage(content="thanks")], False)
        assert response.content == "All done."
        assert "tools" not in fake.seen_kwargs[0]


class TestChatModelFactory:
    def test_uses_settings(self):
        chat_model = create_chat_model(_settings(mistral_model="mistral-large-latest"))
        assert chat_model.model == "mistral-large-latest"
        assert chat_model.temperature == 0.0


class TestPrompts:
    def test_fallback_without_langfuse_keys(self):
        settings = _settings(langfuse_public_key="", langfuse_secret_key="")
        prompt = load_system_prompt(settings, "Grill House Demo")
        assert "Grill House Demo" in prompt
        assert "{{store_name}}" not in prompt
        assert prompt.startswith(FALLBACK_SYSTEM_PROMPT.split("{{")[0])

    def test_menu_context_groups_by_section(self, menu: Menu):
        context = format_menu_context([menu.get(101), menu.get(301), menu.get(102)], "EUR")
        assert context.index("**Burritos**") < context.index("**Sides**")
        assert context.count("**Burritos**") == 1
        assert "- Fries (ID: 301) - 3.50 EUR" in context
        assert '    - Set: "Choose your salsa" (Min: 1, Max: 1)' in context
        assert '      Choices: "Mild Tomato", "Hot Chipotle", "Mango Habanero"' in context
        assert context.rstrip().endswith("add items to their basket.")

    def test_menu_context_empty(self):
        assert format_menu_context([]) == ""
