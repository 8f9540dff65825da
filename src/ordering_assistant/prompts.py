"""System prompt management.

The prompt template lives in Langfuse prompt management under PROMPT_NAME
(label "production"). When Langfuse is not configured or unreachable the
bundled FALLBACK_SYSTEM_PROMPT is used instead.
"""

from collections.abc import Sequence

from langfuse import Langfuse
from loguru import logger

from .config import Settings
from .models import MenuItem

PROMPT_NAME = "ordering-assistant/system"

FALLBACK_SYSTEM_PROMPT = """\
You are a food ordering assistant for {{store_name}}. Help users search the
menu, add items to their basket, and place orders.

Tools available:
- search_menu: Search for food items
- show_items: Display interactive menu item cards (ALWAYS use after search_menu)
- verify_option_selection: Verify an option choice is valid (use BEFORE adding to basket)
- add_to_basket: Add items (use the exact menu_item_id and verified option selections)
- remove_from_basket: Remove items (specify options when removing a specific customization)
- clear_basket: Empty the basket
- submit_order: Submit the order (requires sign-in)

RULES:
1. Menu display: after search_menu, ALWAYS call show_items with ALL menu_item_ids.
   Never describe items in text.
2. Option selection:
   - When the user picks an item with options, ask for their choices set by set.
   - If an option set has a next set (e.g. "Choose your base" -> "Choose your protein"),
     ask for the first set, wait for the answer, and THEN ask for the next one.
   - Use the EXACT names of option sets and options from the menu data.
   - Call verify_option_selection for EACH choice before calling add_to_basket.
3. Only call add_to_basket once every required option set has a verified choice.
4. NEVER claim an order was placed without calling submit_order.
   If submit_order returns AUTHENTICATION_REQUIRED, ask the user to sign in.
5. A "Basket context (read-only)" message describes the current basket. Use it
   to answer questions about the basket; never repeat it verbatim.\
"""


def _compile(template: str, store_name: str) -> str:
    return template.replace("{{store_name}}", store_name)


def load_system_prompt(settings: Settings, store_name: str) -> str:
    """Fetch the system prompt from Langfuse and compile it.

    Falls back to FALLBACK_SYSTEM_PROMPT if Langfuse is unavailable
    (no API keys, network error, prompt not seeded yet).
    """
    if not settings.langfuse_public_key or not settings.langfuse_secret_key:
        logger.info("Langfuse keys not configured, using fallback system prompt")
        return _compile(FALLBACK_SYSTEM_PROMPT, store_name)

    try:
        langfuse = Langfuse(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_base_url,
        )
        prompt = langfuse.get_prompt(PROMPT_NAME, label="production")
        logger.info("Fetched system prompt from Langfuse: {}", PROMPT_NAME)
        template = prompt.prompt
        # Chat prompts carry the template in their system message
        if isinstance(template, list):
            template = next(
                (m["content"] for m in template if m.get("role") == "system"),
                FALLBACK_SYSTEM_PROMPT,
            )
        return _compile(template, store_name)
    except Exception:
        logger.opt(exception=True).warning(
            "Failed to fetch prompt from Langfuse, using fallback"
        )
        return _compile(FALLBACK_SYSTEM_PROMPT, store_name)


def format_menu_context(items: Sequence[MenuItem], currency: str = "EUR") -> str:
    """Render menu items as a prompt block, grouped by section.

    Lists each item's id, price and option sets with their exact choice names
    so the model can build option selections without another search.
    Returns an empty string for no items.
    """
    if not items:
        return ""

    sections: dict[str, list[MenuItem]] = {}
    for item in items:
        sections.setdefault(item.section or "Other", []).append(item)

    lines = ["", "", "--- AVAILABLE MENU ---", "The following items are available for ordering:", ""]
    for section, section_items in sections.items():
        lines.append(f"**{section}**")
        for item in section_items:
            lines.append(f"- {item.name} (ID: {item.id}) - {item.price:.2f} {currency}")
            if item.description:
                lines.append(f"  {item.description}")
            option_sets = list(item.option_sets.iter_sets())
            if option_sets:
                lines.append("  Options:")
            for option_set in option_sets:
                lines.append(
                    f'    - Set: "{option_set.name}" '
                    f"(Min: {option_set.min_select}, Max: {option_set.max_select})"
                )
                if option_set.options:
                    choices = ", ".join(f'"{o.name}"' for o in option_set.options)
                    lines.append(f"      Choices: {choices}")
        lines.append("")

    lines.append("--- END MENU ---")
    lines.append(
        "Use these menu item ids and EXACT option names when the user wants to "
        "add items to their basket."
    )
    return "\n".join(lines) + "\n"
