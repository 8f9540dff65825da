"""Tool-orchestration engine.

One user turn runs through a compiled LangGraph state machine:

    checkout -> (intercepted) END
             -> prepare -> round1 -> (no tool calls) END
                                  -> dispatch -> auto_inject -> classify
                                       -> (terminal) compose_terminal -> END
                                       -> round2 -> END

round1 offers the ordering tools to the model, round2 offers none and only
narrates the results. The basket context message is spliced into each
completion call's input and never written to the graph state, so it can not
leak into the persisted history.
"""

import json
import uuid
from collections.abc import Sequence
from typing import Any

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, MessagesState, StateGraph
from loguru import logger

from .checkout import CheckoutInterceptor
from .completion import CompletionInvoker
from .composer import build_order_confirmation, compose_reply
from .enums import ToolName
from .gateway import DomainGateway, GatewayError
from .history import (
    INITIAL_CALL_PREFIX,
    current_round,
    format_basket_context,
    strip_ephemeral_context,
    strip_initial_display,
    with_ephemeral_context,
)
from .models import MenuItem, TurnResult
from .policies import classify_round, inject_show_items
from .prompts import format_menu_context
from .search_cache import SearchResultCache
from .tools import ToolDispatcher, tool_message

WELCOME_MESSAGE = (
    "Welcome! Here are some popular items to get you started. Feel free to ask "
    "me about the menu or add items to your basket!"
)
INITIAL_DISPLAY_LIMIT = 3


def _calls_in_model_order(ai_message: AIMessage) -> list[tuple[dict[str, Any], bool]]:
    """Parsed and unparsable tool calls interleaved as the model emitted them.

    LangChain keeps the two kinds in separate lists; the provider's raw
    `tool_calls` in `additional_kwargs` still carry the original order.
    """
    calls = [(tc, True) for tc in ai_message.tool_calls]
    calls += [(tc, False) for tc in ai_message.invalid_tool_calls]
    raw_ids = [raw.get("id") for raw in ai_message.additional_kwargs.get("tool_calls") or []]
    if raw_ids:
        position = {call_id: index for index, call_id in enumerate(raw_ids)}
        calls.sort(key=lambda call: position.get(call[0].get("id"), len(raw_ids)))
    return calls


# ---------------------------------------------------------------------------
# State Schema
# ---------------------------------------------------------------------------


class TurnState(MessagesState):
    """State for one turn of the ordering graph.

    Inherits `messages` from MessagesState (with add-message reducer). The
    remaining keys are per-turn scratch space and outcome flags.
    """

    session_id: str
    token: str | None
    search_results: list[MenuItem]  # cache the model may reference by id
    fresh_results: list[MenuItem]  # items found by this round's searches
    tool_calls: list[dict[str, Any]]
    intercepted: bool
    terminal: bool
    auth_required: bool
    token_expired: bool
    order_submitted: bool
    order_id: str | None
    lead_time_prompt: str | None


class OrderingEngine:
    """Turns one user utterance into at most two completion calls with
    sequential tool execution in between.

    The engine holds no per-conversation state: history comes in with every
    call and the new authoritative history goes out in the TurnResult.
    Callers must not run two turns of the same conversation concurrently.
    """

    def __init__(
        self,
        gateway: DomainGateway,
        invoker: CompletionInvoker,
        system_prompt: str | None = None,
        currency: str = "EUR",
    ) -> None:
        self.gateway = gateway
        self.invoker = invoker
        self.system_prompt = system_prompt
        self.currency = currency
        self._checkout = CheckoutInterceptor(gateway)
        self.graph = self._build_graph()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process_turn(
        self,
        history: Sequence[BaseMessage],
        user_text: str,
        session_id: str,
        token: str | None = None,
        config: RunnableConfig | None = None,
    ) -> TurnResult:
        """Run one turn.

        Args:
            history: Persisted conversation so far. Not mutated.
            user_text: The new user message.
            session_id: Conversation / basket identifier for the gateway.
            token: Customer auth token, if signed in.
            config: LangChain run config (callbacks, metadata) for tracing.

        Returns:
            TurnResult whose `all_messages` replaces the caller's history.
        """
        messages = [
            m.model_copy()
            for m in strip_initial_display(strip_ephemeral_context(history))
        ]
        if self.system_prompt and not any(isinstance(m, SystemMessage) for m in messages):
            messages.insert(0, SystemMessage(content=self.system_prompt))
        messages.append(HumanMessage(content=user_text))

        logger.info(
            "Turn started (session_id={}, history={}, authenticated={})",
            session_id,
            len(messages) - 1,
            bool(token),
        )
        final = self.graph.invoke(
            {
                "messages": messages,
                "session_id": session_id,
                "token": token,
                "search_results": [],
                "fresh_results": [],
                "tool_calls": [],
                "intercepted": False,
                "terminal": False,
                "auth_required": False,
                "token_expired": False,
                "order_submitted": False,
                "order_id": None,
                "lead_time_prompt": None,
            },
            config=config,
        )

        all_messages: list[BaseMessage] = list(final["messages"])
        reply = all_messages[-1]
        if not isinstance(reply, AIMessage):
            # Graph always ends on an assistant message; guard the contract
            reply = AIMessage(content="")
            all_messages.append(reply)

        result = TurnResult(
            message=reply,
            all_messages=all_messages,
            tool_calls=final.get("tool_calls") or None,
            auth_required=final.get("auth_required", False),
            token_expired=final.get("token_expired", False),
            order_submitted=final.get("order_submitted", False),
            order_id=final.get("order_id"),
            lead_time_prompt=final.get("lead_time_prompt"),
        )
        logger.info(
            "Turn finished (auth_required={}, token_expired={}, order_submitted={})",
            result.auth_required,
            result.token_expired,
            result.order_submitted,
        )
        return result

    def start_conversation(
        self,
        session_id: str,
        token: str | None = None,
        initial_search: str | None = None,
    ) -> list[BaseMessage]:
        """Build the opening history for a new conversation.

        With an initial search the system prompt is extended with a menu block
        for the results, followed by a display-only search/cards pair (ids
        prefixed `call_init_`) and a welcome message. The display pair is
        dropped again before the first turn reaches the model.
        """
        items: list[MenuItem] = []
        if initial_search:
            try:
                items = self.gateway.search_menu(session_id, initial_search, token)
            except GatewayError as exc:
                logger.warning("Initial search for {!r} failed: {}", initial_search, exc)
            logger.info("Initial search for {!r} returned {} items", initial_search, len(items))

        messages: list[BaseMessage] = []
        system_content = (self.system_prompt or "") + format_menu_context(items, self.currency)
        if system_content:
            messages.append(SystemMessage(content=system_content))

        if items:
            call_id = f"{INITIAL_CALL_PREFIX}{uuid.uuid4().hex[:12]}"
            messages.append(
                AIMessage(
                    content="",
                    tool_calls=[
                        {
                            "id": call_id,
                            "name": ToolName.SEARCH_MENU.value,
                            "args": {"search_terms": [initial_search]},
                            "type": "tool_call",
                        }
                    ],
                )
            )
            messages.append(
                ToolMessage(
                    content=json.dumps(
                        {
                            "status": 200,
                            "display_type": "menu_cards",
                            "items": [
                                item.model_dump(mode="json")
                                for item in items[:INITIAL_DISPLAY_LIMIT]
                            ],
                        }
                    ),
                    tool_call_id=call_id,
                    name=ToolName.SEARCH_MENU.value,
                )
            )
            messages.append(AIMessage(content=WELCOME_MESSAGE))
        return messages

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _basket_context(self, session_id: str, token: str | None) -> SystemMessage | None:
        try:
            basket = self.gateway.get_basket(session_id, token)
        except GatewayError as exc:
            logger.warning("Basket context unavailable: {}", exc)
            return None
        return format_basket_context(basket, self.currency)

    def _complete(
        self, state: TurnState, offer_tools: bool, config: RunnableConfig
    ) -> AIMessage:
        context = self._basket_context(state["session_id"], state["token"])
        model_input = with_ephemeral_context(state["messages"], context)
        return self.invoker.complete(model_input, offer_tools=offer_tools, config=config)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def checkout_node(self, state: TurnState) -> dict:
        """Short-circuit purchase intent before any completion call."""
        outcome = self._checkout.intercept(
            state["messages"], state["session_id"], state["token"]
        )
        if outcome is None:
            return {"intercepted": False}
        return {
            "intercepted": True,
            "messages": [AIMessage(content=outcome.content)],
            "auth_required": outcome.auth_required,
            "token_expired": outcome.token_expired,
            "order_submitted": outcome.order_submitted,
            "order_id": outcome.order_id,
            "lead_time_prompt": outcome.lead_time_prompt,
        }

    def prepare_node(self, state: TurnState) -> dict:
        """Rebuild the search result cache from history."""
        cache = SearchResultCache.from_history(state["messages"])
        logger.debug("Search result cache rebuilt with {} items", len(cache))
        return {"search_results": cache.items}

    def round1_node(self, state: TurnState, config: RunnableConfig) -> dict:
        response = self._complete(state, offer_tools=True, config=config)
        return {"messages": [response]}

    def dispatch_node(self, state: TurnState) -> dict:
        """Execute the round's tool calls in the order the model sent them."""
        ai_message = state["messages"][-1]
        cache = SearchResultCache(state["search_results"])
        dispatcher = ToolDispatcher(
            self.gateway, state["session_id"], state["token"], cache
        )

        results: list[ToolMessage] = []
        for tool_call, parsed in _calls_in_model_order(ai_message):
            if parsed:
                payload = dispatcher.execute(tool_call)
            else:
                payload = dispatcher.execute_invalid(tool_call)
            results.append(
                tool_message(tool_call.get("id") or "", tool_call.get("name") or "", payload)
            )

        update: dict[str, Any] = {
            "messages": results,
            "search_results": cache.items,
            "fresh_results": dispatcher.fresh_results,
            "tool_calls": list(ai_message.tool_calls),
        }
        order = dispatcher.order_result
        if order is not None and order.success:
            update["order_submitted"] = True
            update["order_id"] = order.order_id
            update["lead_time_prompt"] = order.lead_time_prompt
        return update

    def auto_inject_node(self, state: TurnState) -> dict:
        """Render searched items as cards when the model did not."""
        ai_message, _ = current_round(state["messages"])
        if ai_message is None:
            return {}
        injected = inject_show_items(ai_message, state["fresh_results"])
        if injected is None:
            return {}
        updated, result = injected
        # Same id as the original, so add_messages replaces it in place
        return {"messages": [updated, result], "tool_calls": list(updated.tool_calls)}

    def classify_node(self, state: TurnState) -> dict:
        ai_message, tool_messages = current_round(state["messages"])
        tool_calls = ai_message.tool_calls if ai_message is not None else []
        classification = classify_round(tool_messages, tool_calls)
        return {
            "terminal": classification.terminal,
            "auth_required": classification.auth_required,
            "token_expired": classification.token_expired,
        }

    def compose_terminal_node(self, state: TurnState) -> dict:
        """Final message for auth failures and submissions; no second completion."""
        _, tool_messages = current_round(state["messages"])
        content = build_order_confirmation(tool_messages) or ""
        return {"messages": [AIMessage(content=content)]}

    def round2_node(self, state: TurnState, config: RunnableConfig) -> dict:
        response = self._complete(state, offer_tools=False, config=config)
        # A blank narration falls back to the latest confirmation anywhere in history
        tool_messages = [m for m in state["messages"] if isinstance(m, ToolMessage)]
        model_text = response.content if isinstance(response.content, str) else None
        content = compose_reply(model_text, tool_messages)
        if content != response.content:
            response = response.model_copy(update={"content": content})
        return {"messages": [response]}

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    @staticmethod
    def route_after_checkout(state: TurnState) -> str:
        if state.get("intercepted"):
            logger.debug("route_after_checkout -> end (checkout handled)")
            return "end"
        return "continue"

    @staticmethod
    def route_after_round1(state: TurnState) -> str:
        last_message = state["messages"][-1]
        if isinstance(last_message, AIMessage) and (
            last_message.tool_calls or last_message.invalid_tool_calls
        ):
            logger.debug(
                "route_after_round1 -> tools ({} calls)",
                len(last_message.tool_calls) + len(last_message.invalid_tool_calls),
            )
            return "tools"
        logger.debug("route_after_round1 -> respond")
        return "respond"

    @staticmethod
    def route_after_classify(state: TurnState) -> str:
        if state.get("terminal"):
            logger.info("route_after_classify -> terminal")
            return "terminal"
        return "narrate"

    # ------------------------------------------------------------------
    # Graph Construction
    # ------------------------------------------------------------------

    def _build_graph(self):
        builder = StateGraph(TurnState)
        builder.add_node("checkout", self.checkout_node)
        builder.add_node("prepare", self.prepare_node)
        builder.add_node("round1", self.round1_node)
        builder.add_node("dispatch", self.dispatch_node)
        builder.add_node("auto_inject", self.auto_inject_node)
        builder.add_node("classify", self.classify_node)
        builder.add_node("compose_terminal", self.compose_terminal_node)
        builder.add_node("round2", self.round2_node)

        builder.add_edge(START, "checkout")
        builder.add_conditional_edges(
            "checkout",
            self.route_after_checkout,
            {"end": END, "continue": "prepare"},
        )
        builder.add_edge("prepare", "round1")
        builder.add_conditional_edges(
            "round1",
            self.route_after_round1,
            {"tools": "dispatch", "respond": END},
        )
        builder.add_edge("dispatch", "auto_inject")
        builder.add_edge("auto_inject", "classify")
        builder.add_conditional_edges(
            "classify",
            self.route_after_classify,
            {"terminal": "compose_terminal", "narrate": "round2"},
        )
        builder.add_edge("compose_terminal", END)
        builder.add_edge("round2", END)
        return builder.compile()
