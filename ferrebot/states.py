"""
Conversation states and the per-user context they carry.

- DialogueState: the five stages of the ordering dialogue
- DialogueContext: typed view over the stored context mapping
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DialogueState(str, Enum):
    """
    Stages of a customer conversation. There is no terminal state: an
    order_confirmed or cancelled conversation returns to initial on the
    next meaningful turn.
    """

    INITIAL = "initial"
    AWAITING_PRODUCTS = "awaiting_products"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COLLECTING_USER_DATA = "collecting_user_data"
    ORDER_CONFIRMED = "order_confirmed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DialogueState":
        """Read a stored state, treating unknown or empty values as initial."""
        try:
            return cls(value)
        except ValueError:
            return cls.INITIAL


@dataclass
class CartLine:
    """A product id and how many units the customer wants."""
    id: int
    quantity: int = 1

    def to_dict(self) -> Dict[str, int]:
        return {"id": self.id, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartLine":
        return cls(id=int(data["id"]), quantity=int(data.get("quantity", 1)))


_KNOWN_KEYS = {"action", "selectedProducts", "total", "notes", "orderId"}


@dataclass
class DialogueContext:
    """
    Typed context for a conversation.

    Serialised keys: action, selectedProducts, total, notes, orderId.
    Any other key is kept untouched in ``extra`` so newer writers do not
    lose data when older code rewrites the context.
    """
    action: Optional[str] = None  # "quote" | "order"
    selected_products: Optional[List[CartLine]] = None
    total: Optional[float] = None
    notes: str = ""
    order_id: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_products(self) -> bool:
        return bool(self.selected_products)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        if self.action is not None:
            data["action"] = self.action
        if self.selected_products is not None:
            data["selectedProducts"] = [line.to_dict() for line in self.selected_products]
        if self.total is not None:
            data["total"] = self.total
        if self.notes:
            data["notes"] = self.notes
        if self.order_id is not None:
            data["orderId"] = self.order_id
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DialogueContext":
        data = data or {}
        selected = data.get("selectedProducts")
        return cls(
            action=data.get("action"),
            selected_products=(
                [CartLine.from_dict(item) for item in selected]
                if selected is not None
                else None
            ),
            total=data.get("total"),
            notes=data.get("notes") or "",
            order_id=data.get("orderId"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )
