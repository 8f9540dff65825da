"""Checkout interception.

Submitting an order must not depend on the model choosing to call
submit_order, so purchase intent in the latest user message is handled here
directly against the gateway, before any completion call.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass

from langchain_core.messages import BaseMessage
from loguru import logger

from .composer import normalize_lead_time_prompt, order_id_confirmation
from .enums import ErrorCode
from .gateway import DomainGateway, GatewayError
from .history import last_user_text

EMPTY_BASKET_REPLY = "Your basket is empty. Please add items first."

_CHECKOUT_PATTERN = re.compile(
    r"\b(buy|checkout|check out|order|place order|submit order|pay|purchase)\b"
)


def is_checkout_intent(text: str) -> bool:
    return bool(_CHECKOUT_PATTERN.search(text.lower()))


@dataclass
class CheckoutOutcome:
    content: str = ""
    auth_required: bool = False
    token_expired: bool = False
    order_submitted: bool = False
    order_id: str | None = None
    lead_time_prompt: str | None = None


class CheckoutInterceptor:
    def __init__(self, gateway: DomainGateway) -> None:
        self.gateway = gateway

    def intercept(
        self, messages: Sequence[BaseMessage], session_id: str, token: str | None
    ) -> CheckoutOutcome | None:
        """Handle a checkout request, or return None to let the turn proceed."""
        text = last_user_text(messages)
        if not text or not is_checkout_intent(text):
            return None

        logger.info("Checkout intent detected (authenticated={})", bool(token))
        if not token:
            return CheckoutOutcome(auth_required=True)

        try:
            basket = self.gateway.get_basket(session_id, token)
        except GatewayError as exc:
            logger.warning("Could not load basket for checkout: {}", exc)
            basket = None
        if basket is None or basket.is_empty:
            return CheckoutOutcome(content=EMPTY_BASKET_REPLY)

        try:
            result = self.gateway.submit_order(session_id, token)
        except GatewayError as exc:
            logger.warning("Checkout failed: {}", exc)
            return CheckoutOutcome(
                content=exc.display_message or "Order failed.",
                token_expired=exc.code == ErrorCode.TOKEN_EXPIRED,
            )

        if not result.success:
            logger.warning("Checkout rejected ({}): {}", result.error_code, result.error)
            return CheckoutOutcome(
                content=result.error or "Order failed.",
                token_expired=result.error_code == ErrorCode.TOKEN_EXPIRED,
            )

        if result.lead_time_prompt:
            content = normalize_lead_time_prompt(result.lead_time_prompt)
        elif result.order_id:
            content = order_id_confirmation(result.order_id)
        else:
            content = ""
        logger.info("Order {} submitted via checkout", result.order_id)
        return CheckoutOutcome(
            content=content,
            order_submitted=True,
            order_id=result.order_id,
            lead_time_prompt=result.lead_time_prompt,
        )
