"""Tests for the in-memory reference gateway."""

import pytest

from ordering_assistant.enums import ErrorCode
from ordering_assistant.gateway import GatewayError
from ordering_assistant.local_gateway import InMemoryGateway
from ordering_assistant.models import (
    BasketLineRequest,
    BasketUpdate,
    Menu,
    OptionSelection,
    PaymentAccount,
)

SESSION = "chat-gw"


def _add(menu_item_id: int, quantity: int = 1, **selections: list[str]) -> BasketUpdate:
    return BasketUpdate(
        add=[
            BasketLineRequest(
                menu_item_id=menu_item_id,
                quantity=quantity,
                option_selections=[
                    OptionSelection(option_set=name, selected_options=options)
                    for name, options in selections.items()
                ],
            )
        ]
    )


@pytest.fixture
def local(menu: Menu) -> InMemoryGateway:
    return InMemoryGateway(menu, lead_time_minutes=15)


class TestSearch:
    def test_matches_name_case_insensitively(self, local: InMemoryGateway):
        names = [item.name for item in local.search_menu(SESSION, "BURRITO")]
        assert names == ["Chicken Burrito", "Veggie Burrito"]

    def test_every_word_must_match(self, local: InMemoryGateway):
        names = [item.name for item in local.search_menu(SESSION, "chicken burger")]
        assert names == ["Chicken Burger"]

    def test_matches_section(self, local: InMemoryGateway):
        names = {item.name for item in local.search_menu(SESSION, "drinks")}
        assert names == {"Cola", "Lemonade"}

    def test_plural_matches_whole_words_only(self, local: InMemoryGateway):
        """A plural query must not match "fried" in the chicken burger description."""
        names = [item.name for item in local.search_menu(SESSION, "fries")]
        assert names == ["Fries", "Sweet Potato Fries"]

    def test_plural_query_matches_singular_word(self, local: InMemoryGateway):
        names = [item.name for item in local.search_menu(SESSION, "colas")]
        assert names == ["Cola"]

    def test_blank_query_returns_nothing(self, local: InMemoryGateway):
        assert local.search_menu(SESSION, "   ") == []

    def test_results_are_copies(self, local: InMemoryGateway, menu: Menu):
        """Mutating a search result must not touch the menu."""
        item = local.search_menu(SESSION, "cola")[0]
        item.name = "Changed"
        assert menu.get(401).name == "Cola"

    def test_unknown_token_is_expired(self, local: InMemoryGateway):
        with pytest.raises(GatewayError) as exc_info:
            local.search_menu(SESSION, "cola", token="stale")
        assert exc_info.value.code == ErrorCode.TOKEN_EXPIRED


class TestBasket:
    def test_add_prices_options(self, local: InMemoryGateway):
        basket = local.update_basket(SESSION, _add(201, 2, Cooking=["Medium"], Extras=["bacon"]))
        line = basket.items[0]
        assert line.options == ["Medium", "Bacon"]
        assert line.unit_price == 12.5
        assert line.total_price == 25.0
        assert basket.total_price == 25.0

    def test_same_item_and_options_merge(self, local: InMemoryGateway):
        local.update_basket(SESSION, _add(301))
        basket = local.update_basket(SESSION, _add(301, 2))
        assert len(basket.items) == 1
        assert basket.items[0].quantity == 3

    def test_different_options_stay_separate(self, local: InMemoryGateway):
        local.update_basket(SESSION, _add(401, Size=["Regular"]))
        basket = local.update_basket(SESSION, _add(401, Size=["Large"]))
        assert len(basket.items) == 2

    def test_unknown_item_is_unavailable(self, local: InMemoryGateway):
        with pytest.raises(GatewayError) as exc_info:
            local.update_basket(SESSION, _add(999))
        assert exc_info.value.code == ErrorCode.ITEM_UNAVAILABLE

    def test_unavailable_option_is_rejected(self, local: InMemoryGateway):
        with pytest.raises(GatewayError):
            local.update_basket(
                SESSION,
                _add(101, **{"Choose your base": ["Salad"], "Choose your salsa": ["Mango Habanero"]}),
            )

    def test_remove_decrements_then_deletes(self, local: InMemoryGateway):
        local.update_basket(SESSION, _add(301, 2))
        remove = BasketUpdate(remove=[BasketLineRequest(menu_item_id=301)])
        assert local.update_basket(SESSION, remove).items[0].quantity == 1
        assert local.update_basket(SESSION, remove).is_empty

    def test_remove_missing_line_fails(self, local: InMemoryGateway):
        with pytest.raises(GatewayError):
            local.update_basket(SESSION, BasketUpdate(remove=[BasketLineRequest(menu_item_id=301)]))

    def test_closed_restaurant_rejects_mutations(self, menu: Menu):
        closed = InMemoryGateway(menu, is_open=False)
        with pytest.raises(GatewayError) as exc_info:
            closed.update_basket(SESSION, _add(301))
        assert exc_info.value.code == ErrorCode.RESTAURANT_CLOSED

    def test_baskets_are_per_session(self, local: InMemoryGateway):
        local.update_basket(SESSION, _add(301))
        assert local.get_basket("other-chat").is_empty

    def test_clear_basket(self, local: InMemoryGateway):
        local.update_basket(SESSION, _add(301))
        local.clear_basket(SESSION)
        assert local.get_basket(SESSION).is_empty


class TestSubmitOrder:
    def test_success_clears_basket(self, local: InMemoryGateway):
        token = local.register_customer("Sam")
        local.update_basket(SESSION, _add(301), token)
        result = local.submit_order(SESSION, token)
        assert result.success
        assert result.order_id in local.orders
        assert result.lead_time_prompt == (
            'Tell the user: "Your order will be ready in about 15 minutes."'
        )
        assert local.get_basket(SESSION, token).is_empty

    def test_empty_basket(self, local: InMemoryGateway):
        token = local.register_customer("Sam")
        result = local.submit_order(SESSION, token)
        assert not result.success
        assert result.error_code == ErrorCode.BASKET_EMPTY

    def test_revoked_token(self, local: InMemoryGateway):
        token = local.register_customer("Sam")
        local.update_basket(SESSION, _add(301), token)
        local.revoke_token(token)
        result = local.submit_order(SESSION, token)
        assert result.error_code == ErrorCode.TOKEN_EXPIRED

    def test_no_default_payment_method(self, local: InMemoryGateway):
        token = local.register_customer(
            "Sam", payment_accounts=[PaymentAccount(account_id=7, is_default=False)]
        )
        local.update_basket(SESSION, _add(301), token)
        result = local.submit_order(SESSION, token)
        assert result.error_code == ErrorCode.NO_PAYMENT_METHOD

    def test_explicit_payment_account(self, local: InMemoryGateway):
        token = local.register_customer(
            "Sam", payment_accounts=[PaymentAccount(account_id=7, is_default=False)]
        )
        local.update_basket(SESSION, _add(301), token)
        assert local.submit_order(SESSION, token, payment_account_id=7).success

    def test_customer_context(self, local: InMemoryGateway):
        token = local.register_customer("Sam", email="sam@example.com")
        context = local.get_customer_context(SESSION, token)
        assert context.name == "Sam"
        assert context.email == "sam@example.com"
