"""Shared pytest fixtures for ordering assistant tests."""

from collections.abc import Sequence
from pathlib import Path

import pytest
from langchain_core.messages import AIMessage, BaseMessage

from ordering_assistant.engine import OrderingEngine
from ordering_assistant.local_gateway import InMemoryGateway
from ordering_assistant.models import BasketSummary, BasketUpdate, Menu, MenuItem, OrderResult

# Path to the demo menu JSON relative to project root
MENU_JSON_PATH = Path(__file__).resolve().parents[2] / "menus" / "demo-menu.json"

SESSION_ID = "chat-test"
SYSTEM_PROMPT = "You are a food ordering assistant."

MUTATING_CALLS = {"update_basket", "clear_basket", "submit_order"}


class RecordingGateway(InMemoryGateway):
    """InMemoryGateway that records the name of every public call."""

    def __init__(self, menu: Menu, **kwargs) -> None:
        super().__init__(menu, **kwargs)
        self.calls: list[str] = []

    @property
    def mutations(self) -> list[str]:
        return [c for c in self.calls if c in MUTATING_CALLS]

    def search_menu(self, session_id: str, query: str, token: str | None = None) -> list[MenuItem]:
        self.calls.append("search_menu")
        return super().search_menu(session_id, query, token)

    def get_basket(self, session_id: str, token: str | None = None) -> BasketSummary:
        self.calls.append("get_basket")
        return super().get_basket(session_id, token)

    def update_basket(
        self, session_id: str, update: BasketUpdate, token: str | None = None
    ) -> BasketSummary:
        self.calls.append("update_basket")
        return super().update_basket(session_id, update, token)

    def clear_basket(self, session_id: str, token: str | None = None) -> None:
        self.calls.append("clear_basket")
        super().clear_basket(session_id, token)

    def submit_order(
        self, session_id: str, token: str, payment_account_id: int | None = None
    ) -> OrderResult:
        self.calls.append("submit_order")
        return super().submit_order(session_id, token, payment_account_id)


class ScriptedInvoker:
    """Completion invoker that replays canned AI messages in order.

    Records a copy of every input sequence and whether tools were offered.
    """

    def __init__(self, *responses: AIMessage) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[list[BaseMessage], bool]] = []

    def complete(
        self, messages: Sequence[BaseMessage], offer_tools: bool, config=None
    ) -> AIMessage:
        self.calls.append((list(messages), offer_tools))
        if not self.responses:
            raise AssertionError("Completion invoked more often than scripted")
        return self.responses.pop(0)


def tool_call(name: str, call_id: str = "call_1", **args) -> dict:
    """Build a tool call entry for AIMessage.tool_calls."""
    return {"id": call_id, "name": name, "args": args}


@pytest.fixture
def menu() -> Menu:
    """Load the demo menu from JSON."""
    return Menu.from_json_file(MENU_JSON_PATH)


@pytest.fixture
def gateway(menu: Menu) -> RecordingGateway:
    """Fresh recording gateway over the demo menu."""
    return RecordingGateway(menu)


@pytest.fixture
def token(gateway: RecordingGateway) -> str:
    """Token of a signed-in customer with a default payment account."""
    return gateway.register_customer("Alex")


@pytest.fixture
def make_engine(gateway: RecordingGateway):
    """Factory: engine over the recording gateway with a scripted invoker."""

    def _make(*responses: AIMessage) -> tuple[OrderingEngine, ScriptedInvoker]:
        invoker = ScriptedInvoker(*responses)
        engine = OrderingEngine(gateway, invoker, system_prompt=SYSTEM_PROMPT)
        return engine, invoker

    return _make
