"""
Stripe API Client Wrapper
Handles the hosted checkout and subscription calls used by checkout and custom estimates.

Every function returns a dict: {"success": True, ...} on success, or
{"success": False, "error": str, "configured": bool} on failure. "configured" is
False only when STRIPE_SECRET_KEY is missing, so callers can tell a permanent
setup problem from a transient failure.
"""
import os
import logging
import requests
from typing import Optional, Dict, Any, List, Tuple

logger = logging.getLogger(__name__)

STRIPE_API_BASE_URL = "https://api.stripe.com/v1"
STRIPE_CURRENCY = "usd"
PAID_STATUSES = ("paid", "no_payment_required")

def get_stripe_secret_key() -> str:
    secret = os.getenv("STRIPE_SECRET_KEY", "")
    if not secret:
        raise ValueError("STRIPE_SECRET_KEY is not configured.")
    return secret

def get_stripe_headers(idempotency_key: Optional[str] = None) -> Dict[str, str]:
    """Get headers for Stripe API requests"""
    headers = {
        "Authorization": f"Bearer {get_stripe_secret_key()}",
        "Content-Type": "application/x-www-form-urlencoded",
    }
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    return headers

def _not_configured(error: Exception) -> Dict[str, Any]:
    logger.error(f"Stripe is not configured: {error}")
    return {"success": False, "error": str(error), "configured": False}

def _failure(action: str, error: Any) -> Dict[str, Any]:
    logger.error(f"Error {action}: {error}")
    return {"success": False, "error": str(error), "configured": True}

def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"Stripe returned HTTP {response.status_code}"
    return (data.get("error") or {}).get("message") or f"Stripe returned HTTP {response.status_code}"

def _unit_amount(monthly_rate: float) -> str:
    return str(int(round(float(monthly_rate) * 100)))

def _form_key(prefix: str, *parts: str) -> str:
    """_form_key("a[0]", "b", "c") -> "a[0][b][c]"; with no prefix the first part stays bare."""
    if not prefix:
        prefix, parts = parts[0], parts[1:]
    return prefix + "".join(f"[{part}]" for part in parts)

def _price_data_params(prefix: str, item: Dict[str, Any]) -> List[Tuple[str, str]]:
    params = [
        (_form_key(prefix, "currency"), STRIPE_CURRENCY),
        (_form_key(prefix, "unit_amount"), _unit_amount(item["monthlyRate"])),
        (_form_key(prefix, "recurring", "interval"), "month"),
        (_form_key(prefix, "product_data", "name"), str(item["name"])),
        (_form_key(prefix, "product_data", "metadata", "serviceId"), str(item["id"])),
    ]
    if item.get("frequency"):
        params.append((_form_key(prefix, "product_data", "metadata", "frequency"), str(item["frequency"])))
    if item.get("notes"):
        params.append((_form_key(prefix, "product_data", "metadata", "notes"), str(item["notes"])[:500]))
    return params

# --- Checkout Operations ---

def create_checkout_session(
    items: List[Dict[str, Any]],
    success_url: str,
    cancel_url: str,
    customer_email: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    idempotency_key: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create a hosted subscription checkout.
    items: [{"id", "name", "quantity", "monthlyRate", "frequency", "notes"?}]
    Empty metadata values are omitted, Stripe rejects them.
    """
    try:
        headers = get_stripe_headers(idempotency_key)
    except ValueError as e:
        return _not_configured(e)

    params = [
        ("mode", "subscription"),
        ("allow_promotion_codes", "true"),
        ("success_url", success_url),
        ("cancel_url", cancel_url),
    ]
    if customer_email:
        params.append(("customer_email", customer_email))

    for key, value in (metadata or {}).items():
        if value is not None and str(value) != "":
            params.append((f"metadata[{key}]", str(value)))

    for index, item in enumerate(items):
        params.append((f"line_items[{index}][quantity]", str(int(item["quantity"]))))
        params.extend(_price_data_params(f"line_items[{index}][price_data]", item))

    try:
        response = requests.post(f"{STRIPE_API_BASE_URL}/checkout/sessions", data=params, headers=headers, timeout=15)
        if not response.ok:
            return _failure("creating checkout session", _error_message(response))
        data = response.json()
        if not data.get("url"):
            return _failure("creating checkout session", "Stripe did not return a checkout URL.")
        return {"success": True, "session_id": data["id"], "url": data["url"], "session": data}
    except Exception as e:
        return _failure("creating checkout session", e)

def retrieve_checkout_session(session_id: str) -> Dict[str, Any]:
    """Fetch a checkout session: status, payment_status, customer, subscription, metadata."""
    try:
        headers = get_stripe_headers()
    except ValueError as e:
        return _not_configured(e)

    try:
        response = requests.get(f"{STRIPE_API_BASE_URL}/checkout/sessions/{session_id}", headers=headers, timeout=10)
        if not response.ok:
            return _failure("retrieving checkout session", _error_message(response))
        data = response.json()
        return {
            "success": True,
            "session": data,
            "status": data.get("status"),
            "payment_status": data.get("payment_status"),
            "customer_id": data.get("customer") if isinstance(data.get("customer"), str) else None,
            "subscription_id": data.get("subscription") if isinstance(data.get("subscription"), str) else None,
            "metadata": data.get("metadata") or {},
        }
    except Exception as e:
        return _failure("retrieving checkout session", e)

def is_session_paid(session: Dict[str, Any]) -> bool:
    return session.get("status") == "complete" or session.get("payment_status") in PAID_STATUSES

# --- Subscription Operations ---

def retrieve_subscription(subscription_id: str) -> Dict[str, Any]:
    """Retrieve a subscription with its item ids and latest invoice status."""
    try:
        headers = get_stripe_headers()
    except ValueError as e:
        return _not_configured(e)

    try:
        response = requests.get(
            f"{STRIPE_API_BASE_URL}/subscriptions/{subscription_id}",
            params={"expand[]": "latest_invoice"},
            headers=headers,
            timeout=10,
        )
        if not response.ok:
            return _failure("retrieving subscription", _error_message(response))
        data = response.json()
        latest_invoice = data.get("latest_invoice")
        return {
            "success": True,
            "subscription": data,
            "status": data.get("status"),
            "item_ids": [item["id"] for item in (data.get("items") or {}).get("data", [])],
            "latest_invoice_status": latest_invoice.get("status") if isinstance(latest_invoice, dict) else None,
        }
    except Exception as e:
        return _failure("retrieving subscription", e)

def create_recurring_price(item: Dict[str, Any]) -> Dict[str, Any]:
    """Create a monthly price with an inline product; subscription items need a price id."""
    try:
        headers = get_stripe_headers()
    except ValueError as e:
        return _not_configured(e)

    params = _price_data_params("", item)
    try:
        response = requests.post(f"{STRIPE_API_BASE_URL}/prices", data=params, headers=headers, timeout=10)
        if not response.ok:
            return _failure("creating price", _error_message(response))
        return {"success": True, "price_id": response.json()["id"]}
    except Exception as e:
        return _failure("creating price", e)

def update_subscription_items(subscription_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Replace every billing item on a subscription: delete the old item ids, add the new items."""
    current = retrieve_subscription(subscription_id)
    if not current.get("success"):
        return current

    params = []
    index = 0
    for item_id in current["item_ids"]:
        params.append((f"items[{index}][id]", item_id))
        params.append((f"items[{index}][deleted]", "true"))
        index += 1

    for item in items:
        price = create_recurring_price(item)
        if not price.get("success"):
            return price
        params.append((f"items[{index}][price]", price["price_id"]))
        params.append((f"items[{index}][quantity]", str(int(item["quantity"]))))
        index += 1

    try:
        headers = get_stripe_headers()
    except ValueError as e:
        return _not_configured(e)

    try:
        response = requests.post(
            f"{STRIPE_API_BASE_URL}/subscriptions/{subscription_id}", data=params, headers=headers, timeout=15
        )
        if not response.ok:
            return _failure("updating subscription items", _error_message(response))
        data = response.json()
        return {"success": True, "subscription": data, "status": data.get("status")}
    except Exception as e:
        return _failure("updating subscription items", e)

def cancel_subscription(subscription_id: str) -> Dict[str, Any]:
    """Cancel a subscription in Stripe immediately."""
    try:
        headers = get_stripe_headers()
    except ValueError as e:
        return _not_configured(e)

    try:
        response = requests.delete(f"{STRIPE_API_BASE_URL}/subscriptions/{subscription_id}", headers=headers, timeout=10)
        if not response.ok:
            return _failure("cancelling subscription", _error_message(response))
        data = response.json()
        return {"success": True, "subscription": data, "status": data.get("status")}
    except Exception as e:
        return _failure("cancelling subscription", e)
