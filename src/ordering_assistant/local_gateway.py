"""In-memory domain gateway backed by a menu JSON file.

Keeps one basket per chat session and a registry of customer tokens. Used by
the CLI and the test-suite in place of the hosted ordering backend.
"""

import re
import uuid

from loguru import logger

from .enums import ErrorCode
from .gateway import DomainGateway, GatewayError
from .models import (
    BasketLine,
    BasketLineRequest,
    BasketSummary,
    BasketUpdate,
    CustomerContext,
    Menu,
    MenuItem,
    OptionSelection,
    OrderResult,
    PaymentAccount,
)


def _words(text: str) -> list[str]:
    return re.findall(r"[a-z0-9]+", text.lower())


def _matches(item: MenuItem, words: list[str]) -> bool:
    """Every query word must equal a whole word of the name, description or
    section. A trailing "s" may be dropped when the singular is itself a word."""
    haystack = set(_words(f"{item.name} {item.description} {item.section}"))
    for word in words:
        stem = word[:-1] if len(word) > 3 and word.endswith("s") else word
        if word not in haystack and stem not in haystack:
            return False
    return True


class InMemoryGateway(DomainGateway):
    """Reference gateway. Tokens are issued by `register_customer`."""

    def __init__(self, menu: Menu, *, is_open: bool = True, lead_time_minutes: int = 20) -> None:
        self.menu = menu
        self.is_open = is_open
        self.lead_time_minutes = lead_time_minutes
        self.orders: dict[str, list[BasketLine]] = {}
        self._baskets: dict[str, list[BasketLine]] = {}
        self._customers: dict[str, CustomerContext] = {}
        self._payment_accounts: dict[str, list[PaymentAccount]] = {}

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def register_customer(
        self,
        name: str,
        phone_number: str | None = None,
        email: str | None = None,
        payment_accounts: list[PaymentAccount] | None = None,
    ) -> str:
        """Register a customer and return their session token."""
        token = uuid.uuid4().hex
        self._customers[token] = CustomerContext(
            id=str(len(self._customers) + 1),
            name=name,
            phone_number=phone_number,
            email=email,
        )
        if payment_accounts is None:
            payment_accounts = [
                PaymentAccount(account_id=1, description="Card ending 4242", is_default=True)
            ]
        self._payment_accounts[token] = list(payment_accounts)
        logger.info("Registered customer {} ({} payment accounts)", name, len(payment_accounts))
        return token

    def revoke_token(self, token: str) -> None:
        self._customers.pop(token, None)
        self._payment_accounts.pop(token, None)

    def _check_token(self, token: str | None, *, required: bool = False) -> None:
        if token is None and not required:
            return
        if token not in self._customers:
            raise GatewayError(
                "Token expired or invalid",
                code=ErrorCode.TOKEN_EXPIRED,
                status_code=401,
            )

    def get_customer_context(self, session_id: str, token: str) -> CustomerContext:
        self._check_token(token, required=True)
        return self._customers[token].model_copy()

    def get_payment_accounts(self, token: str) -> list[PaymentAccount]:
        self._check_token(token, required=True)
        return [account.model_copy() for account in self._payment_accounts.get(token, [])]

    # ------------------------------------------------------------------
    # Menu
    # ------------------------------------------------------------------

    def search_menu(self, session_id: str, query: str, token: str | None = None) -> list[MenuItem]:
        self._check_token(token)
        words = _words(query)
        if not words:
            return []
        found = [item.model_copy(deep=True) for item in self.menu.items if _matches(item, words)]
        logger.debug("search_menu({!r}) -> {} items", query, len(found))
        return found

    # ------------------------------------------------------------------
    # Basket
    # ------------------------------------------------------------------

    def get_basket(self, session_id: str, token: str | None = None) -> BasketSummary:
        self._check_token(token)
        lines = [line.model_copy() for line in self._baskets.get(session_id, [])]
        total = round(sum(line.total_price for line in lines), 2)
        return BasketSummary(items=lines, total_price=total)

    def update_basket(
        self, session_id: str, update: BasketUpdate, token: str | None = None
    ) -> BasketSummary:
        self._check_token(token)
        if not self.is_open:
            raise GatewayError(
                "Restaurant is closed",
                code=ErrorCode.RESTAURANT_CLOSED,
                user_message="The restaurant is currently closed.",
                status_code=409,
            )
        lines = self._baskets.setdefault(session_id, [])
        for request in update.add:
            self._add_line(lines, request)
        for request in update.remove:
            self._remove_line(lines, request)
        return self.get_basket(session_id, token)

    def clear_basket(self, session_id: str, token: str | None = None) -> None:
        self._check_token(token)
        self._baskets.pop(session_id, None)

    def _add_line(self, lines: list[BasketLine], request: BasketLineRequest) -> None:
        item = self.menu.get(request.menu_item_id)
        if item is None:
            raise GatewayError(
                f"Menu item {request.menu_item_id} is unavailable",
                code=ErrorCode.ITEM_UNAVAILABLE,
                status_code=400,
            )
        options, extra = self._resolve_options(item, request.option_selections)
        unit_price = round(item.price + extra, 2)
        for index, line in enumerate(lines):
            if line.menu_item_id == item.id and sorted(line.options) == sorted(options):
                quantity = line.quantity + request.quantity
                lines[index] = line.model_copy(
                    update={"quantity": quantity, "total_price": round(unit_price * quantity, 2)}
                )
                return
        lines.append(
            BasketLine(
                menu_item_id=item.id,
                name=item.name,
                quantity=request.quantity,
                unit_price=unit_price,
                total_price=round(unit_price * request.quantity, 2),
                options=options,
            )
        )

    def _remove_line(self, lines: list[BasketLine], request: BasketLineRequest) -> None:
        wanted = {
            name.lower() for sel in request.option_selections for name in sel.selected_options
        }
        for index, line in enumerate(lines):
            if line.menu_item_id != request.menu_item_id:
                continue
            if wanted and {name.lower() for name in line.options} != wanted:
                continue
            quantity = line.quantity - request.quantity
            if quantity <= 0:
                del lines[index]
            else:
                lines[index] = line.model_copy(
                    update={"quantity": quantity, "total_price": round(line.unit_price * quantity, 2)}
                )
            return
        raise GatewayError(
            f"Menu item {request.menu_item_id} is not in the basket",
            code=ErrorCode.ITEM_UNAVAILABLE,
            user_message="That item is not in your basket.",
            status_code=400,
        )

    @staticmethod
    def _resolve_options(
        item: MenuItem, selections: list[OptionSelection]
    ) -> tuple[list[str], float]:
        names: list[str] = []
        extra = 0.0
        for selection in selections:
            option_set = item.option_sets.find_set(selection.option_set)
            if option_set is None:
                raise GatewayError(
                    f'Option set "{selection.option_set}" not found for {item.name}',
                    code=ErrorCode.ITEM_UNAVAILABLE,
                    status_code=400,
                )
            for name in selection.selected_options:
                option = option_set.find_option(name)
                if option is None or not option.is_available:
                    raise GatewayError(
                        f'Option "{name}" is not available in "{option_set.name}"',
                        code=ErrorCode.ITEM_UNAVAILABLE,
                        status_code=400,
                    )
                names.append(option.name)
                extra += option.price
        return names, extra

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def submit_order(
        self, session_id: str, token: str, payment_account_id: int | None = None
    ) -> OrderResult:
        if token not in self._customers:
            return OrderResult(
                success=False,
                error="Your session has expired. Please sign in again.",
                error_code=ErrorCode.TOKEN_EXPIRED,
            )
        if not self.is_open:
            return OrderResult(
                success=False,
                error="The restaurant is currently closed.",
                error_code=ErrorCode.RESTAURANT_CLOSED,
            )
        lines = self._baskets.get(session_id)
        if not lines:
            return OrderResult(
                success=False, error="Your basket is empty.", error_code=ErrorCode.BASKET_EMPTY
            )

        account_id = payment_account_id
        if account_id is None:
            default = next((a for a in self.get_payment_accounts(token) if a.is_default), None)
            if default is None:
                return OrderResult(
                    success=False,
                    error="No payment method available",
                    error_code=ErrorCode.NO_PAYMENT_METHOD,
                )
            account_id = default.account_id

        order_id = uuid.uuid4().hex[:8].upper()
        self.orders[order_id] = self._baskets.pop(session_id)
        logger.info(
            "Order {} submitted for session {} (payment account {})",
            order_id,
            session_id,
            account_id,
        )
        return OrderResult(
            success=True,
            order_id=order_id,
            lead_time_prompt=(
                f'Tell the user: "Your order will be ready in about '
                f'{self.lead_time_minutes} minutes."'
            ),
        )
