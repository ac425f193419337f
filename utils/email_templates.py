"""
Transactional email bodies.

Each builder returns {"subject", "html", "text"}. All user-supplied values are
escaped before they reach the HTML; the text part is sent alongside for clients
that do not render HTML.
"""
import os
from html import escape
from typing import Any, Dict, List, Optional

from utils.email import BRAND_COLORS, get_site_url

CELL = "padding: 8px 12px; border-bottom: 1px solid #e2e8f0;"


def format_currency(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "$0.00"
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def _first_name(first_name: Optional[str], last_name: Optional[str], fallback: str = "there") -> str:
    return (first_name or "").strip() or (last_name or "").strip() or fallback


def format_address(address: Dict[str, Any]) -> str:
    return f"{address.get('street', '')}, {address.get('city', '')}, {address.get('state', '')} {address.get('postalCode', '')}"


def render_layout(subject: str, heading: str, content_html: str, preheader: str = "",
                  action: Optional[Dict[str, str]] = None, footer_note: Optional[str] = None) -> str:
    footer_note = footer_note or (
        "You are receiving this email because you have a Trash Panda account. "
        "If this feels unexpected, reply to this email."
    )
    action_block = ""
    if action:
        action_block = f"""
        <p style="margin: 24px 0 0 0; text-align: center;">
          <a href="{escape(action['url'])}" style="display: inline-block; padding: 12px 26px; background:{BRAND_COLORS['primary']}; color: #ffffff; border-radius: 999px; font-weight: 700; text-decoration: none; text-transform: uppercase;">{escape(action['label'])}</a>
        </p>
        <p style="margin: 18px 0 0 0; font-size: 12px; color: #475569; text-align: center;">
          Having trouble with the button? Copy and paste this link into your browser:<br />{escape(action['url'])}
        </p>"""

    return f"""<!DOCTYPE html>
<html lang="en">
  <head><meta charset="UTF-8" /><title>{escape(subject)}</title></head>
  <body style="margin:0; padding:24px 0; background:{BRAND_COLORS['light']}; font-family: 'Inter', system-ui, sans-serif; color:{BRAND_COLORS['slate']};">
    <div style="display:none; max-height:0; overflow:hidden; opacity:0;">{escape(preheader)}</div>
    <table role="presentation" width="560" align="center" cellpadding="0" cellspacing="0" style="margin: 0 auto; background:#ffffff; border-radius: 16px; border: 1px solid #e2e8f0;">
      <tr>
        <td style="padding: 24px 28px; background:{BRAND_COLORS['dark']}; color:#ecfdf3;">
          <div style="font-size: 12px; letter-spacing: 0.12em; text-transform: uppercase; font-weight: 600;">Trash Panda</div>
          <div style="margin-top: 6px; font-size: 24px; font-weight: 800;">{escape(heading)}</div>
        </td>
      </tr>
      <tr><td style="padding: 24px 28px 28px 28px;">{content_html}{action_block}</td></tr>
    </table>
    <p style="margin: 12px auto 0; width: 560px; text-align: center; color:#64748b; font-size: 12px;">{escape(footer_note)}</p>
  </body>
</html>"""


def _greeting(name: str, intro: str) -> str:
    return (
        f'<p style="margin: 0; font-size: 16px; font-weight: 600;">Hi {escape(name)},</p>'
        f'<p style="margin: 12px 0 0 0; font-size: 15px; line-height: 24px;">{escape(intro)}</p>'
    )


def _rows_table(title: str, header: List[str], rows: List[List[str]], total_line: str, empty_text: str) -> str:
    head = "".join(f'<th align="left" style="{CELL}">{escape(label)}</th>' for label in header)
    if rows:
        body = "".join(
            "<tr>" + "".join(f'<td style="{CELL}">{escape(str(cell))}</td>' for cell in row) + "</tr>"
            for row in rows
        )
    else:
        body = f'<tr><td colspan="{len(header)}" style="padding: 12px; text-align: center; color:#475569;">{escape(empty_text)}</td></tr>'
    return f"""
    <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="border-collapse: collapse; margin-top: 20px; border: 1px solid #e2e8f0;">
      <tr><td colspan="{len(header)}" style="background:{BRAND_COLORS['light']}; padding: 14px 16px; font-weight: 700;">{escape(title)}</td></tr>
      <tr style="font-size: 12px; text-transform: uppercase;">{head}</tr>
      {body}
      <tr><td colspan="{len(header)}" style="padding: 12px 16px; text-align: right; font-weight: 700;">{escape(total_line)}</td></tr>
    </table>"""


def build_signup_welcome_email(first_name: Optional[str] = None, last_name: Optional[str] = None) -> Dict[str, str]:
    login_url = f"{get_site_url()}/login"
    name = _first_name(first_name, last_name)
    intro = (
        "Welcome to Trash Panda! We are excited to keep your pickup day effortless. You can sign in to view "
        "your account, update service details, or start a custom plan whenever you are ready."
    )
    subject = "Welcome to Trash Panda"
    return {
        "subject": subject,
        "html": render_layout(subject, "Welcome", _greeting(name, intro),
                              preheader="Thanks for signing up for Trash Panda.",
                              action={"label": "Sign in", "url": login_url}),
        "text": (
            f"Hi {name},\n\nWelcome to Trash Panda! You can sign in to manage your account and start new services."
            f"\n\nSign in: {login_url}\n"
        ),
    }


def build_custom_estimate_email(estimate: Dict[str, Any], first_name: Optional[str] = None,
                                last_name: Optional[str] = None, review_url: Optional[str] = None) -> Dict[str, str]:
    """estimate is the dict form of a CustomEstimate (camelCase keys)."""
    name = _first_name(first_name, last_name)
    review_url = review_url or f"{get_site_url()}/dash/custom-plans"
    line_items = estimate.get("lineItems") or []
    addresses = estimate.get("addresses") or []
    adjustment = estimate.get("monthlyAdjustment") or 0
    service_day = (estimate.get("preferredServiceDay") or "").strip().upper() or None
    notes = estimate.get("notes")
    total_line = f"Estimated monthly total: {format_currency(estimate.get('total'))}"
    adjustment_line = f"Monthly adjustment: {format_currency(adjustment)}" if adjustment else None
    intro = "Your custom quote is ready. Review the details below, then approve and checkout when you are ready."

    rows = [
        [item.get("description", ""), item.get("frequency") or "Monthly", item.get("quantity", 1),
         format_currency(item.get("lineTotal"))]
        for item in line_items
    ]
    content = _greeting(name, intro) + _rows_table(
        "Quote details", ["Item", "Frequency", "Qty", "Monthly"], rows, total_line,
        "We will confirm the quote details shortly.",
    )
    if adjustment_line:
        content += f'<p style="margin: 12px 0 0 0; font-size: 13px; color:#475569;">{escape(adjustment_line)}</p>'
    address_items = "".join(
        f"<li>{escape(address['label'] + ': ') if address.get('label') else ''}{escape(format_address(address))}</li>"
        for address in addresses
    ) or "<li>We will confirm the service address on your account.</li>"
    content += f'<p style="margin: 18px 0 0 0; font-weight: 600;">Service addresses</p><ul>{address_items}</ul>'
    if service_day:
        content += f'<p style="font-size: 14px; color:#475569;">Preferred service day: {escape(service_day)}</p>'
    if notes:
        content += (
            f'<div style="margin-top: 16px; padding: 14px; border: 1px solid #e2e8f0; background:{BRAND_COLORS["light"]};">'
            f'<p style="margin: 0; font-weight: 600;">Notes from your Trash Panda team</p>'
            f'<p style="margin: 8px 0 0 0; color:#475569;">{escape(notes)}</p></div>'
        )

    text_lines = "\n".join(
        f"- {item.get('description')} ({item.get('frequency') or 'Monthly'}) x{item.get('quantity', 1)}: "
        f"{format_currency(item.get('lineTotal'))}"
        for item in line_items
    ) or "We will confirm your quote details shortly."
    text_addresses = "\n".join(
        (f"{address['label']}: " if address.get("label") else "") + format_address(address) for address in addresses
    ) or "We will confirm the service address on your account."
    text = f"Hi {name},\n\n{intro}\n\n{text_lines}\n{total_line}\n"
    if adjustment_line:
        text += f"{adjustment_line}\n"
    text += f"\nService addresses:\n{text_addresses}\n"
    if service_day:
        text += f"Preferred service day: {service_day}\n"
    if notes:
        text += f"\nNotes: {notes}\n"
    text += f"\nReview and approve: {review_url}\n"

    subject = "Your Trash Panda custom quote is ready"
    return {
        "subject": subject,
        "html": render_layout(subject, "Custom quote ready", content,
                              preheader="Review your Trash Panda custom quote and approve it online.",
                              action={"label": "Review & approve quote", "url": review_url}),
        "text": text,
    }


def build_subscription_email(services: List[Dict[str, Any]], address: Dict[str, Any], updated: bool = False,
                             first_name: Optional[str] = None, last_name: Optional[str] = None,
                             service_day: Optional[str] = None, plan_name: Optional[str] = None,
                             monthly_total: Optional[float] = None, access_notes: Optional[str] = None,
                             manage_url: Optional[str] = None) -> Dict[str, str]:
    """Confirmation email after signup for services, or the update variant after an edit."""
    name = _first_name(first_name, last_name, fallback="Trash Panda friend")
    manage_url = manage_url or f"{get_site_url()}/dash/manage"
    support_email = os.getenv("CONTACT_RECIPIENT") or "support@thetrashpanda.net"
    support_phone = (os.getenv("CONTACT_PHONE") or "").strip()
    day = service_day.strip().capitalize() if service_day else None

    if updated:
        subject = "Your Trash Panda subscription was updated"
        heading = "Subscription updated"
        intro = "We updated your subscription. Here are the details we now have on file."
    else:
        subject = "Your Trash Panda subscription is confirmed"
        heading = "Subscription confirmed"
        intro = "Thanks for choosing The Trash Panda. Your subscription is set! Here are the details we have on file."
        if plan_name:
            intro += f" Plan: {plan_name}."

    rows = [
        [service.get("name", ""), service.get("frequency", ""), service.get("quantity", 1),
         format_currency((service.get("monthlyRate") or 0) * (service.get("quantity") or 1))]
        for service in services
    ]
    total_line = f"Estimated monthly total: {format_currency(monthly_total or 0)}"
    label = (address.get("label") or "").strip() or "Service address"
    content = _greeting(name, intro) + _rows_table(
        "Your services", ["Service", "Frequency", "Qty", "Monthly"], rows, total_line,
        "We will confirm your services shortly.",
    )
    content += (
        f'<p style="margin: 18px 0 0 0;"><strong>Service day:</strong> '
        f'{escape(day) if day else "We will coordinate your preferred day."}</p>'
        f'<p style="margin: 8px 0 0 0;"><strong>{escape(label)}:</strong> {escape(format_address(address))}</p>'
    )
    if access_notes:
        content += f'<p style="margin: 8px 0 0 0;"><strong>Access notes:</strong> {escape(access_notes)}</p>'
    contact = f"reply to this email, reach us at {support_email}"
    if support_phone:
        contact += f", or call {support_phone}"
    content += f'<p style="margin: 16px 0 0 0; font-size: 14px; color:#475569;">If anything looks off, {escape(contact)}.</p>'

    service_text = "\n".join(
        f"- {service.get('name')} ({service.get('frequency')}) x{service.get('quantity', 1)}: "
        f"{format_currency((service.get('monthlyRate') or 0) * (service.get('quantity') or 1))}"
        for service in services
    ) or "We will confirm your service list shortly."
    text = (
        f"Hi {name},\n\n{intro}\n\nServices:\n{service_text}\n{total_line}\n\n"
        f"Service day: {day or 'We will coordinate your preferred day.'}\n"
        f"{label}: {format_address(address)}\n"
    )
    if access_notes:
        text += f"Access notes: {access_notes}\n"
    text += f"\nManage your subscription: {manage_url}\nIf anything looks off, {contact}.\n"

    return {
        "subject": subject,
        "html": render_layout(subject, heading, content, preheader=intro,
                              action={"label": "Manage my subscription", "url": manage_url},
                              footer_note="You are receiving this message because you signed up for Trash Panda services."),
        "text": text,
    }


def build_contact_email(first_name: str, last_name: str, email: str, message: str, phone: str = "",
                        company: str = "", frequency_label: str = "Not specified") -> Dict[str, str]:
    fields = [
        ("Name", f"{first_name} {last_name}"),
        ("Email", email),
        ("Phone", phone or "Not provided"),
        ("Company", company or "Not provided"),
        ("Service frequency", frequency_label),
    ]
    items = "".join(f"<li><strong>{escape(label)}:</strong> {escape(value)}</li>" for label, value in fields)
    html_message = escape(message).replace("\n", "<br />")
    html = (
        f"<p>You received a new message from the Trash Panda website.</p><ul>{items}</ul>"
        f"<p><strong>Message:</strong></p><p>{html_message}</p>"
    )
    text = "You received a new message from the Trash Panda website.\n\n"
    text += "\n".join(f"{label}: {value}" for label, value in fields)
    text += f"\n\nMessage:\n{message}"
    return {"subject": f"New contact request from {first_name} {last_name}", "html": html, "text": text}
