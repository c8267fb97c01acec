#models.py
from dataclasses import dataclass, field, asdict, fields
from typing import Optional, List, Dict, Any


def _to_bool(value) -> Optional[bool]:
    # SQLite keeps booleans as 1/0; NULL stays unknown
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    return None


@dataclass
class Order:
    id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    shipping_address: Optional[str] = None
    paid: Optional[bool] = None
    stripe_customer_id: Optional[str] = None
    delivery_status: Optional[str] = None
    tracking_link: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_id: Optional[str] = None
    label_url: Optional[str] = None
    manual_instruction: Optional[str] = None
    instruction: Optional[str] = None
    important: bool = False
    expected_delivery_date: Optional[str] = None
    last_delivery_status_check: Optional[str] = None
    sendcloud_return_id: Optional[str] = None
    sendcloud_return_parcel_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Order":
        """Build from a sqlite3.Row or dict. Unknown keys are ignored."""
        data = dict(row)
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["paid"] = _to_bool(data.get("paid"))
        kwargs["important"] = bool(data.get("important") or 0)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DeliveryStatusResult:
    status: Optional[str]
    error: Optional[str] = None
    last_update: Optional[str] = None
    carrier: Optional[str] = None
    expected_delivery_date: Optional[str] = None
    statuses: List[dict] = field(default_factory=list)


@dataclass
class ParcelDetails:
    parcel_id: str
    status_message: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    label_url: Optional[str] = None
    raw: Optional[dict] = None


@dataclass
class SubscriptionInfo:
    trial_end: Optional[int]
    status: Optional[str]
    message: str
    subscription_id: Optional[str] = None
    link: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None or k in ("trial_end", "status")}
