# services/instructions.py
"""
Shipping instruction derivation.

Maps an order's payment / delivery / tracking fields to exactly one
InstructionLabel. Rules are checked top to bottom and the first match wins,
so the order of INSTRUCTION_RULES is the precedence.

Orders may be an ``models.Order`` or any mapping with the same field names.
Missing fields count as empty; ``paid`` is compared strictly against
True/False so an unknown payment state matches neither.
"""
from enum import Enum
from typing import Any, Callable, Tuple

DELIVERED_STATUS = "Delivered"
READY_TO_SEND_STATUS = "Ready to send"


class InstructionLabel(str, Enum):
    DELIVERED = "DELIVERED"
    SHIPPED = "SHIPPED"
    TO_BE_SHIPPED_BUT_NO_STICKER = "TO BE SHIPPED BUT NO STICKER"
    TO_SHIP = "TO SHIP"
    DO_NOT_SHIP = "DO NOT SHIP"
    NO_ACTION_REQUIRED = "NO ACTION REQUIRED"
    ACTION_REQUIRED = "ACTION REQUIRED"


class DisplayStatus(str, Enum):
    EMPTY = "EMPTY"
    PENDING = "PENDING"


FALLBACK_INSTRUCTION = InstructionLabel.ACTION_REQUIRED


def is_empty(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _field(order: Any, name: str) -> Any:
    if order is None:
        return None
    if hasattr(order, "keys"):
        # dicts and sqlite3.Row
        return order[name] if name in order.keys() else None
    return getattr(order, name, None)


class _Facts:
    """Normalized view of the five fields the rules look at."""

    __slots__ = ("paid", "has_billing", "delivery_status", "has_delivery_status",
                 "tracking_link", "has_tracking", "has_shipping_id")

    def __init__(self, order: Any):
        self.paid = _field(order, "paid")
        self.has_billing = not is_empty(_field(order, "stripe_customer_id"))
        self.delivery_status = _field(order, "delivery_status")
        self.has_delivery_status = not is_empty(self.delivery_status)
        self.tracking_link = _field(order, "tracking_link")
        self.has_tracking = not is_empty(self.tracking_link)
        self.has_shipping_id = not is_empty(_field(order, "shipping_id"))

    @property
    def paid_with_billing(self) -> bool:
        return self.paid is True and self.has_billing

    @property
    def tracking_is_https(self) -> bool:
        return (not is_empty(self.tracking_link)
                and self.tracking_link.strip().lower().startswith("https"))


def _delivered(f: _Facts) -> bool:
    return (f.has_delivery_status
            and f.paid_with_billing
            and f.delivery_status == DELIVERED_STATUS)


def _shipped(f: _Facts) -> bool:
    return (f.has_delivery_status
            and f.delivery_status != READY_TO_SEND_STATUS
            and f.paid_with_billing
            and f.delivery_status != DELIVERED_STATUS
            and f.has_tracking)


def _no_sticker(f: _Facts) -> bool:
    # "Empty label" lands here through the https prefix test
    return (not f.has_delivery_status
            and f.paid_with_billing
            and (not f.has_tracking or not f.tracking_is_https))


def _to_ship(f: _Facts) -> bool:
    return (f.delivery_status == READY_TO_SEND_STATUS
            and f.paid_with_billing
            and f.has_tracking)


def _do_not_ship(f: _Facts) -> bool:
    return f.has_tracking and f.paid is False and not f.has_delivery_status


def _no_action_required(f: _Facts) -> bool:
    return (f.has_tracking
            and f.paid_with_billing
            and f.has_shipping_id
            and f.delivery_status != DELIVERED_STATUS)


INSTRUCTION_RULES: Tuple[Tuple[InstructionLabel, Callable[[_Facts], bool]], ...] = (
    (InstructionLabel.DELIVERED, _delivered),
    (InstructionLabel.SHIPPED, _shipped),
    (InstructionLabel.TO_BE_SHIPPED_BUT_NO_STICKER, _no_sticker),
    (InstructionLabel.TO_SHIP, _to_ship),
    (InstructionLabel.DO_NOT_SHIP, _do_not_ship),
    (InstructionLabel.NO_ACTION_REQUIRED, _no_action_required),
)


def derive_instruction(order: Any) -> InstructionLabel:
    facts = _Facts(order)
    for label, matches in INSTRUCTION_RULES:
        if matches(facts):
            return label
    return FALLBACK_INSTRUCTION


def derive_display_status(order: Any) -> str:
    if is_empty(_field(order, "tracking_link")):
        return DisplayStatus.EMPTY.value
    delivery_status = _field(order, "delivery_status")
    if not is_empty(delivery_status):
        return delivery_status.upper()
    return DisplayStatus.PENDING.value


def effective_instruction(order: Any) -> str:
    """Staff override wins over the derived label."""
    manual = _field(order, "manual_instruction")
    if not is_empty(manual):
        return manual.strip()
    return derive_instruction(order).value
