"""Domain gateway: the capability set the engine needs from the commerce backend.

The engine only depends on this interface. `InMemoryGateway` in
`local_gateway.py` is the bundled implementation used by the CLI and tests.
"""

from abc import ABC, abstractmethod

from .models import (
    BasketSummary,
    BasketUpdate,
    CustomerContext,
    MenuItem,
    OrderResult,
    PaymentAccount,
)


class GatewayError(Exception):
    """Backend failure with an optional machine-readable code and a
    human-readable message safe to show the customer."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        user_message: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.user_message = user_message
        self.status_code = status_code

    @property
    def display_message(self) -> str:
        return self.user_message or str(self)


class DomainGateway(ABC):
    """Commerce backend capabilities, scoped by chat session id."""

    @abstractmethod
    def search_menu(
        self, session_id: str, query: str, token: str | None = None
    ) -> list[MenuItem]: ...

    @abstractmethod
    def get_basket(self, session_id: str, token: str | None = None) -> BasketSummary: ...

    @abstractmethod
    def update_basket(
        self, session_id: str, update: BasketUpdate, token: str | None = None
    ) -> BasketSummary: ...

    @abstractmethod
    def clear_basket(self, session_id: str, token: str | None = None) -> None: ...

    @abstractmethod
    def get_payment_accounts(self, token: str) -> list[PaymentAccount]: ...

    @abstractmethod
    def submit_order(
        self, session_id: str, token: str, payment_account_id: int | None = None
    ) -> OrderResult:
        """Submit the session's basket.

        Business failures come back as an unsuccessful OrderResult; transport
        failures raise GatewayError.
        """

    @abstractmethod
    def get_customer_context(self, session_id: str, token: str) -> CustomerContext: ...
