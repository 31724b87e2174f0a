"""
Message formatters for Telegram bot responses.

All user-facing text lives here. Messages are sent as plain text, so user
input and sheet contents need no escaping.
"""

from datetime import datetime
from typing import Optional

from flatbot.config import (
    CATEGORY_EXAMPLES,
    CURRENCY_SYMBOL,
    MAX_COLLECTION_LABEL_LENGTH,
    MAX_FLAT_NUMBER_LENGTH,
)
from flatbot.models import (
    CollectionEntry,
    CollectionPeriod,
    Field,
    FlatInfo,
    Mode,
    PaymentStatus,
    TransactionDraft,
)

# ---------------------------------------------------------------------------
# Question prompts
# ---------------------------------------------------------------------------

TRANSACTION_PROMPTS = {
    Field.AMOUNT: "What is the amount?",
    Field.CATEGORY: f"What is the category? (e.g., {', '.join(CATEGORY_EXAMPLES)})",
    Field.DESCRIPTION: "What is this expense/income for?",
    Field.DATE: "What is the date? (YYYY-MM-DD)",
}

FLAT_PROMPTS = {
    Field.FLAT_NUMBER: "Enter flat number:",
    Field.FLOOR_NUMBER: "Enter floor number:",
    Field.OWNER_NAME: "Enter owner name:",
    Field.MAINTENANCE_AMOUNT: "Enter maintenance amount:",
    Field.PHONE_NUMBER: "Enter phone number:",
    Field.IS_OCCUPIED: "Is the flat occupied? (yes/no):",
    Field.TENANT_NAME: "If occupied, enter tenant name (or type skip):",
    Field.EMAIL: "Enter email (or type skip):",
}

COLLECTION_PROMPTS = {
    Field.COLLECTION_LABEL: "Enter collection name:",
    Field.COLLECTION_DESCRIPTION: "Enter any additional description (or type skip):",
    Field.COLLECTION_AMOUNT: "Enter the amount per flat:",
}


# ---------------------------------------------------------------------------
# Menus and entry prompts
# ---------------------------------------------------------------------------

def format_welcome() -> str:
    return "Welcome to the Flat Association Expense Bot! 🏢\n\nPlease select an option:"


def format_help() -> str:
    return (
        "📖 Help\n"
        "\n"
        "/expense — record an expense\n"
        "/income — record an income\n"
        "/report — this month's report\n"
        "/flats — manage flats\n"
        "/maintenance — start this month's maintenance collection\n"
        "/collection — create or view collections\n"
        "/cancel — cancel the current operation\n"
        "\n"
        "Quick entry: Amount, Category, Description\n"
        "Example: 1000, Maintenance, Monthly cleaning\n"
        "Or upload a receipt photo after choosing expense/income."
    )


def format_unauthorized() -> str:
    return "⛔ You are not authorized to use this bot. Please contact the administrator for access."


def format_entry_prompt(mode: Mode) -> str:
    """Prompt shown when an expense/income flow starts."""
    if mode is Mode.INCOME:
        kind, example = "income", "5000, Dues, Monthly maintenance"
    else:
        kind, example = "expense", "1000, Maintenance, Monthly cleaning"
    return (
        f"Please enter the {kind} details in the following format:\n"
        "Amount, Category, Description\n"
        f"Example: {example}\n"
        "\n"
        "Or upload a receipt image."
    )


def format_select_entry_type() -> str:
    return "Please select whether this is an expense or income:"


def format_flow_discarded() -> str:
    return "⚠️ Your unsaved entry was discarded."


def format_cancel_message() -> str:
    return "❌ Operation cancelled"


def format_flats_menu() -> str:
    return "🏢 Flat Management\n\nPlease select an option:"


def format_collections_menu() -> str:
    return "📋 Create New Collection\n\nSelect the type of collection to create:"


def format_pick_flat(purpose: str) -> str:
    return f"Select a flat to {purpose}:"


# ---------------------------------------------------------------------------
# Expense / income flow
# ---------------------------------------------------------------------------

def format_confirmation(draft: TransactionDraft, receipt_url: Optional[str], added_by: str) -> str:
    """Details shown before the user answers yes/no."""
    lines = [
        "Please confirm the following details:",
        "",
        f"Amount: {format_number(draft.amount)}",
        f"Category: {draft.category or ''}",
        f"Description: {draft.description or ''}",
        f"Date: {draft.date or ''}",
        f"Type: {draft.type}",
    ]
    if receipt_url:
        lines.append(f"Receipt: {receipt_url}")
    lines.append(f"Added By: {added_by}")
    lines.append("")
    lines.append("Is this correct? (yes/no)")
    return "\n".join(lines)


def format_processing_receipt() -> str:
    return "Processing your receipt... 📝"


def format_uploading_receipt() -> str:
    return "Uploading receipt to Google Drive... 📤"


def format_running_ocr() -> str:
    return "Extracting text from image... 🔍"


def format_analyzing_text() -> str:
    return "Analyzing the extracted text... 🤖"


def format_upload_failed() -> str:
    return (
        "❌ Error processing your receipt: the image could not be uploaded. "
        "Please start again with /expense or /income."
    )


def format_ocr_failed() -> str:
    return (
        "❌ Error processing your receipt: text recognition failed. "
        "Please start again with /expense or /income."
    )


def format_no_text_found() -> str:
    return (
        "❌ Could not extract any text from the image. Please try again with a clearer "
        "image or enter the details manually:\nAmount, Category, Description"
    )


def format_extraction_failed() -> str:
    return (
        "❌ Failed to extract information from the text. Please try entering the details "
        "manually using the format:\nAmount, Category, Description"
    )


def format_invalid_entry_format() -> str:
    return (
        "⚠️ Please use the format: Amount, Category, Description\n"
        "Example: 1000, Maintenance, Monthly cleaning"
    )


def format_invalid_amount() -> str:
    return "⚠️ Invalid amount. Please enter a number, e.g. 1000 or 1250.50"


def format_answer_yes_no() -> str:
    return "Please answer yes or no."


def format_details_missing() -> str:
    return "Some details are still missing."


def format_reenter_details() -> str:
    return "OK, let's start over. Please send the details again:\nAmount, Category, Description"


def format_entry_saved() -> str:
    return "Entry added successfully! ✅"


def format_entry_save_failed() -> str:
    return "❌ Error adding entry. Reply yes to try again or no to edit."


# ---------------------------------------------------------------------------
# Flats
# ---------------------------------------------------------------------------

def format_required_field() -> str:
    return "❌ This field is required. Please provide a value."


def format_invalid_yes_no() -> str:
    return "⚠️ Please answer yes or no."


def format_invalid_flat_number() -> str:
    return (
        f"⚠️ Flat number must be at most {MAX_FLAT_NUMBER_LENGTH} characters "
        "and must not contain '|'."
    )


def format_new_flat() -> str:
    return "🏢 Add New Flat"


def format_updating_flat(flat_number: str) -> str:
    return f"📝 Updating Flat {flat_number}"


def format_flat_saved() -> str:
    return "✅ Flat information saved successfully!"


def format_flat_save_failed() -> str:
    return "❌ Error saving flat information. Please try again."


def format_flat_details(flat: FlatInfo) -> str:
    lines = [
        f"Flat {flat.flat_number}:",
        f"Floor: {flat.floor_number}",
        f"Owner: {flat.owner_name}",
    ]
    if flat.tenant_name:
        lines.append(f"Tenant: {flat.tenant_name}")
    lines.append(f"Maintenance: {format_money(flat.maintenance_amount)}")
    lines.append(f"Phone: {flat.phone_number}")
    if flat.email:
        lines.append(f"Email: {flat.email}")
    lines.append(f"Status: {'Occupied' if flat.is_occupied else 'Vacant'}")
    lines.append(f"Last Updated: {_format_timestamp(flat.last_updated)}")
    return "\n".join(lines)


def format_flats_list(flats: list[FlatInfo]) -> str:
    if not flats:
        return "No flats found in the database."
    blocks = [format_flat_details(f) for f in flats]
    return "🏢 All Flats Information:\n\n" + "\n\n".join(blocks)


def format_flat_not_found(flat_number: str) -> str:
    return f"Flat {flat_number} not found."


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

def format_collection_start(period: CollectionPeriod) -> str:
    if period.kind == "other":
        return f"📝 New collection for {period.month} {period.year}"
    return f"📋 Creating {period.display_name} collection for {period.month} {period.year}"


def format_invalid_collection_label() -> str:
    return (
        f"⚠️ Collection name must be at most {MAX_COLLECTION_LABEL_LENGTH} characters "
        "and must not contain '|'."
    )


def format_invalid_collection_amount() -> str:
    return "❌ Please enter a valid amount greater than 0."


def format_collection_created(added: int) -> str:
    return f"✅ Collection sheet created successfully! ({added} new entries)"


def format_collection_failed() -> str:
    return "❌ Error creating collection sheet. Please try again."


def format_collection_view(period: CollectionPeriod, entries: list[CollectionEntry]) -> str:
    """Totals plus flat-wise status for one collection."""
    total = sum(e.amount for e in entries)
    paid = sum(e.amount for e in entries if e.status is PaymentStatus.PAID)
    lines = [
        f"📋 {period.display_name} Collection - {period.month} {period.year}",
        "",
    ]
    if period.description:
        lines.extend([period.description, ""])
    lines.extend([
        f"Total Amount: {format_money(total)}",
        f"Paid Amount: {format_money(paid)}",
        f"Pending Amount: {format_money(total - paid)}",
        "",
        "Flat-wise Status:",
        "",
    ])
    for entry in entries:
        lines.append(f"Flat {entry.flat_number} ({entry.owner_name})")
        lines.append(f"Amount: {format_money(entry.amount)}")
        lines.append(f"Status: {format_status(entry.status)}")
        if entry.status is PaymentStatus.PAID and entry.payment_date:
            lines.append(f"Payment Date: {entry.payment_date}")
            lines.append(f"Marked by: {entry.marked_by or 'Unknown'}")
        lines.append("")
    return "\n".join(lines).rstrip()


def format_collection_empty() -> str:
    return "No data found for this collection."


def format_no_collections() -> str:
    return "No collections found."


def format_pick_collection() -> str:
    return "Select a collection to view or update:"


def format_maintenance_summary(period: CollectionPeriod, flats: list[FlatInfo]) -> str:
    lines = [f"💰 Maintenance Collection - {period.month} {period.year}", ""]
    for flat in flats:
        lines.append(f"Flat {flat.flat_number}:")
        lines.append(f"Owner: {flat.owner_name}")
        lines.append(f"Amount: {format_money(flat.maintenance_amount)}")
        lines.append(f"Phone: {flat.phone_number}")
        lines.append("")
    total = sum(f.maintenance_amount for f in flats)
    lines.append(f"Total Expected: {format_money(total)}")
    return "\n".join(lines)


def format_payment_updated(entry: CollectionEntry) -> str:
    lines = [
        f"Payment status updated for Flat {entry.flat_number}:",
        "",
        f"Owner: {entry.owner_name}",
        f"Amount: {format_money(entry.amount)}",
        f"New Status: {format_status(entry.status)}",
    ]
    if entry.status is PaymentStatus.PAID and entry.payment_date:
        lines.append(f"Payment Date: {entry.payment_date}")
    return "\n".join(lines)


def format_flat_not_in_collection() -> str:
    return "Flat not found in collection."


def format_status(status: PaymentStatus) -> str:
    return "✅ Paid" if status is PaymentStatus.PAID else "⏳ Pending"


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def format_generating_report(kind: str = "monthly") -> str:
    return f"📊 Generating {kind} report..."


def format_report(title: str, income: float, expenses: float, recent: list[str]) -> str:
    """Totals and the most recent entries for a period."""
    net = income - expenses
    marker = "🟢" if net >= 0 else "🔴"
    sign = "+" if net >= 0 else "-"
    rule = "━" * 20
    lines = [
        f"📊 {title}",
        rule,
        "",
        f"💰 Total Income: {format_money(income)}",
        f"💸 Total Expenses: {format_money(expenses)}",
        f"{marker} Net Balance: {sign}{format_money(abs(net))}",
    ]
    if recent:
        lines.extend(["", "📝 Recent Entries:", rule, *recent])
    lines.extend(["", "View full report in Google Sheets"])
    return "\n".join(lines)


def format_report_entry(row: list[str]) -> str:
    """One ledger row (Date|Type|Category|Description|Amount|...) for a report."""
    cells = (list(row) + [""] * 5)[:5]
    entry_date, entry_type, category, description, amount = cells
    return f"{entry_date} - {entry_type.upper()} - {category}\n{description} - {amount}"


def format_no_entries(period_label: str) -> str:
    return f"No entries found for {period_label}."


def format_report_failed() -> str:
    return "❌ Error generating report. Please try again later."


def format_read_failed() -> str:
    return "❌ Error retrieving data. Please try again."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def format_number(value: Optional[float]) -> str:
    """500.0 → '500', 12.5 → '12.5', None → ''."""
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


def format_money(amount: float) -> str:
    """Currency with Indian digit grouping: 123456 → '₹1,23,456'."""
    negative = amount < 0
    amount = round(abs(amount), 2)
    integer_part = int(amount)
    fraction = round(amount - integer_part, 2)
    digits = str(integer_part)
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups + [tail])
    text = digits
    if fraction:
        text += f"{fraction:.2f}"[1:].rstrip("0")
    return f"{'-' if negative else ''}{CURRENCY_SYMBOL}{text}"


def _format_timestamp(value: str) -> str:
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M")
    except (TypeError, ValueError):
        return value or "—"
