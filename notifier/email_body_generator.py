"""
Email Body Generator Module

This module generates the HTML body of record notifications:
- Heading (the notification title)
- One bullet per field that holds a value, in a fixed order
- Footer

A field without a value contributes no bullet. Only the equipment-code line
(when shown) and the quantity line use a literal "-" for missing parts.

All HTML is email-client safe (Gmail-compatible) and every value is escaped.
The generator is a pure function of its inputs.
"""

from datetime import date
from html import escape
from typing import Any, List, Mapping, Optional

from notifier.config import EMAIL_FOOTER
from notifier.fields import (
    EQUIPMENT_CODE_KEYS,
    LATEST_CAL_KEYS,
    LOCATION_KEYS,
    NEXT_CAL_KEYS,
    SERIAL_KEYS,
    TEAM_KEYS,
    WITHDRAW_DATE_KEYS,
    value_of,
)
from notifier.timeutil import days_remaining, format_date


def _bold(value: Any) -> str:
    return f"<b>{escape(str(value))}</b>"


def _line(label: str, value: Any) -> str:
    return f"{label}: {_bold(value)}"


def generate_record_email_body(
    record: Mapping[str, Any],
    title: str,
    hide_equipment_code: bool = False,
    prefer_model: bool = False,
    today: Optional[date] = None
) -> str:
    """
    Generate the HTML body for one inventory record.

    Args:
        record: Record mapping with dates already normalized at load time
        title: Heading shown above the bullet list
        hide_equipment_code: Omit the equipment-code line entirely
        prefer_model: Label the type/model line with Model first, falling back to Type
        today: Local date used for the "days left" annotation (default: today)

    Returns:
        HTML fragment string
    """
    record = record or {}
    lines: List[str] = []

    borrower = value_of(record, "Borrower")
    if borrower is not None:
        lines.append(_line("Borrower / responsible", borrower))

    team = value_of(record, *TEAM_KEYS)
    if team is not None:
        lines.append(_line("Team / department", team))

    equipment = value_of(record, "Equipment")
    if equipment is not None:
        lines.append(_line("Equipment", equipment))

    brand = value_of(record, "Brand")
    if brand is not None:
        lines.append(_line("Brand", brand))

    if prefer_model:
        model = value_of(record, "Model", "Type")
    else:
        model = value_of(record, "Type", "Model")
    if model is not None:
        lines.append(_line("Type / model", model))

    serial = value_of(record, *SERIAL_KEYS)
    if serial is not None:
        lines.append(_line("Serial", serial))

    location = value_of(record, *LOCATION_KEYS)
    if location is not None:
        lines.append(_line("Location", location))

    if not hide_equipment_code:
        equipment_code = value_of(record, *EQUIPMENT_CODE_KEYS)
        lines.append(_line("Equipment Code", equipment_code if equipment_code is not None else "-"))

    latest_cal = value_of(record, *LATEST_CAL_KEYS)
    if latest_cal is not None:
        lines.append(_line("Perform Date (latest)", format_date(latest_cal)))

    next_cal = value_of(record, *NEXT_CAL_KEYS)
    if next_cal is not None:
        line = _line("Due Date (next)", format_date(next_cal))
        days_left = days_remaining(next_cal, today=today)
        if days_left is not None:
            line += f" (<b>{days_left} days left</b>)"
        lines.append(line)

    borrow_date = value_of(record, "borrow_date")
    if borrow_date is not None:
        lines.append(_line("Borrow date", format_date(borrow_date)))

    return_date = value_of(record, "return_date")
    if return_date is not None:
        lines.append(_line("Return date", format_date(return_date)))

    # Cleaning supplies
    item = value_of(record, "Item")
    if item is not None:
        lines.append(_line("Item", item))

    requester = value_of(record, "Requester")
    if requester is not None:
        lines.append(_line("Requester", requester))

    taken = value_of(record, "Taken")
    total = value_of(record, "Total")
    if taken is not None or total is not None:
        lines.append(
            f"Quantity taken: {_bold(taken if taken is not None else '-')} "
            f"of total: {_bold(total if total is not None else '-')}"
        )

    withdrawn = value_of(record, *WITHDRAW_DATE_KEYS)
    if withdrawn is not None:
        lines.append(_line("Withdrawal date", format_date(withdrawn)))

    recorded = value_of(record, "timestamp")
    if recorded is not None:
        lines.append(_line("Recorded on", format_date(recorded)))

    items_html = "".join(f"<li>{line}</li>" for line in lines)

    return f"""
<div style="font-family: Arial, sans-serif; font-size: 14px; color: #222;">
    <h2 style="color: #002366; margin: 0 0 8px;">{escape(title)}</h2>
    <ul>{items_html}</ul>
    <p style="margin-top: 12px; color: #888;">{escape(EMAIL_FOOTER)}</p>
</div>
"""
