"""CLI entry point for the ordering assistant.

Usage:
    python -m ordering_assistant.main

Commands inside the chat:
    /signin <name>   sign in as a new customer (enables order submission)
    /signout         drop the current token
    /basket          print the current basket
    quit             exit
"""

import uuid
from collections.abc import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from loguru import logger

from .completion import CompletionInvoker, create_chat_model
from .config import Settings, get_settings
from .engine import OrderingEngine
from .history import parse_tool_content
from .local_gateway import InMemoryGateway
from .logging import setup_logging
from .models import Menu, MenuItem
from .prompts import load_system_prompt


def _create_langfuse_handler(settings: Settings):
    """Create a Langfuse callback handler if credentials are configured.

    Returns None if Langfuse is not configured.
    """
    if not settings.langfuse_public_key or not settings.langfuse_secret_key:
        return None

    from langfuse import Langfuse
    from langfuse.langchain import CallbackHandler

    # Initialize the Langfuse singleton client with credentials
    Langfuse(
        public_key=settings.langfuse_public_key,
        secret_key=settings.langfuse_secret_key,
        host=settings.langfuse_base_url,
    )

    return CallbackHandler()


def _run_config(session_id: str, langfuse_handler) -> dict:
    """LangChain run config for one CLI session. The graph keeps no checkpoints,
    so only tracing callbacks and metadata are passed."""
    if langfuse_handler is None:
        return {}
    return {
        "callbacks": [langfuse_handler],
        "metadata": {"langfuse_session_id": session_id},
    }


def _print_cards(messages: Sequence[BaseMessage], currency: str) -> None:
    """Print menu cards carried by show_items / initial display results."""
    for msg in messages:
        if not isinstance(msg, ToolMessage):
            continue
        parsed = parse_tool_content(msg.content)
        if not parsed or parsed.get("display_type") != "menu_cards":
            continue
        for raw in parsed.get("items", []):
            item = MenuItem.model_validate(raw)
            print(f"  [{item.id}] {item.name} - {item.price:.2f} {currency}")
            for option_set in item.option_sets.iter_sets():
                choices = ", ".join(o.name for o in option_set.options)
                print(f"        {option_set.name}: {choices}")


def _print_basket(gateway: InMemoryGateway, session_id: str, currency: str) -> None:
    basket = gateway.get_basket(session_id)
    if basket.is_empty:
        print("Basket is empty.")
        return
    for line in basket.items:
        options = f" [{', '.join(line.options)}]" if line.options else ""
        print(f"  {line.quantity} x {line.name}{options} ({line.total_price:.2f} {currency})")
    print(f"  Total: {basket.total_price:.2f} {currency}")


def _new_turn_messages(all_messages: Sequence[BaseMessage]) -> list[BaseMessage]:
    """Messages produced after the latest user message."""
    for i in range(len(all_messages) - 1, -1, -1):
        if isinstance(all_messages[i], HumanMessage):
            return list(all_messages[i + 1 :])
    return list(all_messages)


def main() -> None:
    """Run the ordering assistant CLI."""
    settings = get_settings()

    # Initialize logging first (stderr + rotating file)
    setup_logging(level=settings.log_level)
    logger.info("Starting ordering assistant CLI")

    menu = Menu.from_json_file(settings.menu_json_path)
    currency = menu.currency or settings.currency
    logger.info("Menu loaded: {} ({} items)", menu.store_name, len(menu.items))
    print(f"Menu loaded: {menu.store_name} ({len(menu.items)} items)")
    print()

    gateway = InMemoryGateway(menu, lead_time_minutes=settings.lead_time_minutes)
    invoker = CompletionInvoker(create_chat_model(settings))
    engine = OrderingEngine(
        gateway,
        invoker,
        system_prompt=load_system_prompt(settings, menu.store_name),
        currency=currency,
    )

    session_id = f"cli-{uuid.uuid4()}"
    token: str | None = None
    logger.info("Session started (session_id={})", session_id)

    # Attach Langfuse callback handler if available
    langfuse_handler = _create_langfuse_handler(settings)
    config = _run_config(session_id, langfuse_handler)
    if langfuse_handler:
        logger.info("Langfuse tracing enabled (session_id={})", session_id)
        print(f"Langfuse tracing: enabled (session_id={session_id})")
    else:
        logger.info("Langfuse tracing disabled (no credentials)")
        print("Langfuse tracing: disabled (no credentials)")

    print("-" * 50)
    print("Ordering assistant ready! Type 'quit' to exit.")
    print("Commands: /signin <name>, /signout, /basket")
    print("-" * 50)
    print()

    history = engine.start_conversation(
        session_id, token, initial_search=settings.initial_search or None
    )
    _print_cards(history, currency)
    if history and isinstance(history[-1], AIMessage):
        print(f"Bot: {history[-1].content}")
        print()

    while True:
        try:
            user_input = input("You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nGoodbye!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("quit", "exit", "q"):
            print("Goodbye!")
            break
        if user_input.startswith("/signin"):
            name = user_input.removeprefix("/signin").strip() or "Guest"
            token = gateway.register_customer(name)
            print(f"Signed in as {name}.")
            continue
        if user_input == "/signout":
            token = None
            print("Signed out.")
            continue
        if user_input == "/basket":
            _print_basket(gateway, session_id, currency)
            continue

        logger.debug("User input: {}", user_input)
        result = engine.process_turn(history, user_input, session_id, token, config=config)
        history = result.all_messages

        _print_cards(_new_turn_messages(history), currency)
        if result.message.content:
            print(f"Bot: {result.message.content}")
        print()

        if result.auth_required:
            print("Please sign in to continue: /signin <name>")
        if result.token_expired:
            token = None
            print("Your session has expired. Sign in again with /signin <name>.")
        if result.order_submitted:
            print("-" * 50)
            print(f"Order placed! Order ID: {result.order_id}")
            print("-" * 50)

    # Flush Langfuse on exit
    if langfuse_handler:
        from langfuse import get_client

        get_client().flush()

    logger.info("Session ended (session_id={})", session_id)


if __name__ == "__main__":
    main()
