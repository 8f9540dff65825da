import json
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated, Any, Literal

from langchain_core.messages import AIMessage, BaseMessage
from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Menu
# ---------------------------------------------------------------------------


class Option(BaseModel):
    option_id: int | None = None
    name: str
    price: float = 0.0
    is_available: bool = True


class OptionSet(BaseModel):
    """One set of choices. `next` is the set asked after this one, whichever
    option was picked."""

    name: str
    min_select: int = 0
    max_select: int = 1
    options: list[Option] = Field(default_factory=list)
    next: "OptionSet | None" = None

    @model_validator(mode="before")
    @classmethod
    def _accept_chain_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "next" not in data and "after_choosing_this" in data:
            data = {**data, "next": data["after_choosing_this"]}
        return data

    def find_option(self, name: str) -> Option | None:
        wanted = name.strip().lower()
        return next((o for o in self.options if o.name.lower() == wanted), None)


class _OptionSetsBase(BaseModel, ABC):
    @abstractmethod
    def iter_sets(self) -> Iterator[OptionSet]: ...

    def set_names(self) -> list[str]:
        return [s.name for s in self.iter_sets()]

    def find_set(self, name: str) -> OptionSet | None:
        wanted = name.strip().lower()
        return next((s for s in self.iter_sets() if s.name.lower() == wanted), None)

    @property
    def is_empty(self) -> bool:
        return next(self.iter_sets(), None) is None


class FlatOptionSets(_OptionSetsBase):
    """Independent option sets, no chaining."""

    kind: Literal["flat"] = "flat"
    sets: list[OptionSet] = Field(default_factory=list)

    def iter_sets(self) -> Iterator[OptionSet]:
        yield from self.sets


class ChainedOptionSets(_OptionSetsBase):
    """A linear chain of option sets starting at `first`."""

    kind: Literal["chained"] = "chained"
    first: OptionSet

    def iter_sets(self) -> Iterator[OptionSet]:
        current: OptionSet | None = self.first
        while current is not None:
            yield current
            current = current.next


OptionSets = Annotated[FlatOptionSets | ChainedOptionSets, Field(discriminator="kind")]


class MenuItem(BaseModel):
    id: int
    name: str
    description: str = ""
    section: str = ""
    price: float = 0.0
    image_url: str | None = None
    option_sets: OptionSets = Field(default_factory=FlatOptionSets)

    @field_validator("description", "section", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("option_sets", mode="before")
    @classmethod
    def _coerce_option_sets(cls, value: Any) -> Any:
        # Search answers either a flat list of sets or the head of a chain
        if value is None:
            return {"kind": "flat", "sets": []}
        if isinstance(value, list):
            return {"kind": "flat", "sets": value}
        if isinstance(value, dict) and "kind" not in value:
            return {"kind": "chained", "first": value}
        return value


class Menu(BaseModel):
    store_name: str
    currency: str = "EUR"
    items: list[MenuItem]

    def get(self, item_id: int) -> MenuItem | None:
        return next((i for i in self.items if i.id == item_id), None)

    @classmethod
    def from_dict(cls, data: dict) -> "Menu":
        """Load Menu from a dictionary (matching JSON structure)."""
        metadata = data["metadata"]
        return cls(
            store_name=metadata["store_name"],
            currency=metadata.get("currency", "EUR"),
            items=[MenuItem.model_validate(item) for item in data["items"]],
        )

    @classmethod
    def from_json_file(cls, path: str | Path) -> "Menu":
        """Load Menu from a JSON file path."""
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)


# ---------------------------------------------------------------------------
# Basket
# ---------------------------------------------------------------------------


class OptionSelection(BaseModel):
    option_set: str
    selected_options: list[str] = Field(default_factory=list)


class BasketLineRequest(BaseModel):
    menu_item_id: int
    quantity: int = Field(default=1, ge=1)
    option_selections: list[OptionSelection] = Field(default_factory=list)


class BasketUpdate(BaseModel):
    add: list[BasketLineRequest] = Field(default_factory=list)
    remove: list[BasketLineRequest] = Field(default_factory=list)


class BasketLine(BaseModel):
    menu_item_id: int
    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price: float = 0.0
    total_price: float = 0.0
    options: list[str] = Field(default_factory=list)


class BasketSummary(BaseModel):
    items: list[BasketLine] = Field(default_factory=list)
    total_price: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.items

    def find_line(self, menu_item_id: int) -> BasketLine | None:
        return next((line for line in self.items if line.menu_item_id == menu_item_id), None)


# ---------------------------------------------------------------------------
# Customer / Order
# ---------------------------------------------------------------------------


class CustomerContext(BaseModel):
    id: str | None = None
    phone_number: str | None = None
    email: str | None = None
    name: str | None = None


class PaymentAccount(BaseModel):
    account_id: int
    account_type: str = "Card"
    description: str = ""
    is_default: bool = False


class OrderResult(BaseModel):
    success: bool
    order_id: str | None = None
    lead_time_prompt: str | None = None
    error: str | None = None
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Turn
# ---------------------------------------------------------------------------


class TurnResult(BaseModel):
    """Outcome of one user turn.

    `all_messages` is the new authoritative history and replaces the caller's
    copy. It never contains the ephemeral basket context message.
    """

    message: AIMessage
    all_messages: list[BaseMessage]
    tool_calls: list[dict[str, Any]] | None = None
    auth_required: bool = False
    token_expired: bool = False
    order_submitted: bool = False
    order_id: str | None = None
    lead_time_prompt: str | None = None
