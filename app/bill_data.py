"""
Bill Data Model
===============

Flat, always-populated record of the fields pulled out of a utility bill.
Every field has a default, so a record built from unreadable input is still
a complete form the user can edit before saving.

Attribute names are snake_case; ``to_dict()`` emits the camelCase keys used
by the bills REST endpoint.
"""
import json
from dataclasses import dataclass, asdict, fields
from datetime import date
from typing import Optional


FALLBACK_TARIFF_RATE = 7.0
DEFAULT_CONNECTION_TYPE = "Domestic"


def current_billing_month(today: Optional[date] = None) -> str:
    """Return the ``YYYY-MM`` month of *today* (defaults to the current date)."""
    today = today or date.today()
    return today.strftime("%Y-%m")


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class ExtractedBillData:
    """Structured representation of an electricity bill."""
    # Supplier / amounts
    energy_supplier: str = ""
    monthly_bill: float = 0.0
    billing_month: str = ""
    units_consumed: float = 0.0
    bill_total: float = 0.0
    bill_breakdown: str = ""
    tariff_rate: float = FALLBACK_TARIFF_RATE

    # Connection / account
    connection_type: str = DEFAULT_CONNECTION_TYPE
    user_address: str = ""
    area_tariff: str = ""
    due_date: str = ""
    is_paid: bool = False
    customer_id: str = ""
    meter_number: str = ""
    sanctioned_load: float = 0.0

    # Extraction metadata
    confidence: float = 0.0

    # Reading details
    reading_date: str = ""
    bill_date: str = ""
    user_name: str = ""
    security_deposit: float = 0.0
    units_billed: float = 0.0
    units_credited: float = 0.0

    # Charge breakdown (estimated from the total)
    energy_charges: float = 0.0
    fpppa_charges: float = 0.0
    government_duty: float = 0.0
    fixed_charges: float = 0.0
    previous_due: float = 0.0

    # Support
    complaint_number: str = ""
    helpline_number: str = ""

    def __post_init__(self):
        if not self.billing_month:
            self.billing_month = current_billing_month()

    # ---- serialization helpers ----

    def to_dict(self, camel_case: bool = True) -> dict:
        """Serialize to a plain dict, camelCase keys by default."""
        d = asdict(self)
        if not camel_case:
            return d
        return {JSON_KEYS[k]: v for k, v in d.items()}

    def to_json(self, **kwargs) -> str:
        """Serialize to a camelCase JSON string."""
        return json.dumps(self.to_dict(), **kwargs)

    @classmethod
    def from_dict(cls, d: dict) -> "ExtractedBillData":
        """Construct from a dict with camelCase or snake_case keys.

        Unknown keys (e.g. ``userId`` or storage metadata) are ignored.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in d.items():
            name = ATTRIBUTE_NAMES.get(key, key)
            if name in known:
                kwargs[name] = value
        return cls(**kwargs)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


# JSON key overrides where plain camelCase differs from the stored schema.
_KEY_OVERRIDES = {"customer_id": "customerID"}

JSON_KEYS: dict[str, str] = {
    f.name: _KEY_OVERRIDES.get(f.name, _camel(f.name))
    for f in fields(ExtractedBillData)
}
ATTRIBUTE_NAMES: dict[str, str] = {v: k for k, v in JSON_KEYS.items()}


def default_bill_data() -> ExtractedBillData:
    """Return the all-default record used when nothing could be extracted."""
    return ExtractedBillData()
