"""
Input normalization shared by checkout, subscription edits and custom estimates.

Payloads arrive as loosely typed JSON from the dashboard. Entries that cannot be
coerced are dropped rather than rejected one by one; callers decide whether an
empty result is an error.
"""
import math
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from models.subscription import SERVICE_DAYS

def to_number(value: Any) -> Optional[float]:
    """Coerce ints, floats and numeric strings. Anything else (including NaN) is None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number

def round_cents(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def clean_string(value: Any, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str):
        return ""
    text = value.strip()
    if max_length is not None:
        text = text[:max_length]
    return text

def normalize_services(services: Any) -> List[Dict[str, Any]]:
    if not isinstance(services, list):
        return []

    normalized = []
    for service in services:
        if not isinstance(service, dict):
            continue

        service_id = clean_string(service.get("id"))
        name = clean_string(service.get("name"))
        frequency = clean_string(service.get("frequency"))
        if not service_id or not name or not frequency:
            continue

        quantity = to_number(service.get("quantity"))
        monthly_rate = to_number(service.get("monthlyRate"))
        if quantity is None or monthly_rate is None:
            continue

        quantity = max(1, round_half_up(quantity))
        monthly_rate = max(0.0, monthly_rate)
        if monthly_rate <= 0:
            continue

        notes = service.get("notes")
        normalized.append({
            "id": service_id,
            "name": name,
            "frequency": frequency,
            "quantity": quantity,
            "monthlyRate": monthly_rate,
            "notes": notes if isinstance(notes, str) else None,
        })

    return normalized

def services_total(services: List[Dict[str, Any]]) -> float:
    return round_cents(sum(service["quantity"] * service["monthlyRate"] for service in services))

def normalize_address(address: Any) -> Optional[Dict[str, Any]]:
    """Returns None unless street, city, state and postal code are all present."""
    if not isinstance(address, dict):
        return None

    street = clean_string(address.get("street"))
    city = clean_string(address.get("city"))
    state = clean_string(address.get("state")).upper()
    postal_code = clean_string(address.get("postalCode"))
    if not street or not city or not state or not postal_code:
        return None

    label = clean_string(address.get("label")) or None
    address_id = address.get("id")
    return {
        "id": address_id if isinstance(address_id, (int, str)) and address_id != "" else None,
        "label": label,
        "street": street,
        "city": city,
        "state": state,
        "postalCode": postal_code,
    }

def normalize_addresses(addresses: Any) -> List[Dict[str, Any]]:
    if not isinstance(addresses, list):
        return []
    return [address for address in (normalize_address(item) for item in addresses) if address]

def address_summary(address: Dict[str, Any]) -> str:
    return f"{address['street']}, {address['city']}, {address['state']} {address['postalCode']}"

def normalize_line_items(items: Any) -> List[Dict[str, Any]]:
    if not isinstance(items, list):
        return []

    normalized = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue

        description = clean_string(item.get("description"))
        frequency = clean_string(item.get("frequency"))
        raw_quantity = item.get("quantity")
        raw_rate = item.get("monthlyRate")
        quantity = 1.0 if raw_quantity is None else to_number(raw_quantity)
        monthly_rate = 0.0 if raw_rate is None else to_number(raw_rate)
        if not description or quantity is None or monthly_rate is None:
            continue

        quantity = max(1, round_half_up(quantity))
        monthly_rate = max(0.0, round_cents(monthly_rate))
        item_id = item.get("id")
        notes = clean_string(item.get("notes")) if isinstance(item.get("notes"), str) else None

        normalized.append({
            "id": item_id if isinstance(item_id, str) and item_id else f"line-{index + 1}",
            "description": description,
            "frequency": frequency,
            "quantity": quantity,
            "monthlyRate": monthly_rate,
            "notes": notes,
            "lineTotal": round_cents(quantity * monthly_rate),
        })

    return normalized

def estimate_totals(line_items: List[Dict[str, Any]], monthly_adjustment: float):
    """Returns (subtotal, total). Total mirrors subtotal for now."""
    subtotal = round_cents(sum(item["lineTotal"] for item in line_items) + monthly_adjustment)
    return subtotal, subtotal

def normalize_service_day(value: Any) -> Optional[str]:
    day = clean_string(value).upper()
    return day if day in SERVICE_DAYS else None

US_STATE_CODES = (
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FL", "GA", "HI", "ID", "IL", "IN", "IA",
    "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ", "NM",
    "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA",
    "WV", "WI", "WY",
)

POSTAL_CODE_PATTERN = re.compile(r"^\d{5}(?:-?\d{4})?$")

def is_us_state(value: str) -> bool:
    return value in US_STATE_CODES

def is_postal_code(value: str) -> bool:
    return bool(POSTAL_CODE_PATTERN.match(value))
