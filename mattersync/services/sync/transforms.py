"""
PracticePanther → internal record mapping
One pure function per entity type. No I/O, no clock: the writer stamps
synced_at and the resolver context already holds every foreign id lookup.

Money arrives as integer minor units (hundredths) and is divided by 100
here, exactly once.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple

from mattersync.services.sync.entities import (
    CASE_REF,
    CONTACT_REF,
    EntityType,
    external_id_of,
    ref_display_name,
    ref_external_id,
)
from mattersync.services.sync.errors import TransformError
from mattersync.services.sync.resolver import ResolverContext, match_user, resolve

CENTS = Decimal("0.01")

CASE_STATUS_MAP = {
    "closed": "completed",
    "open": "active",
    "active": "active",
}

ORGANIZATION_PATTERN = re.compile(r"\b(LLC|Inc|Corp|Company|Bank|Trust)\b", re.IGNORECASE)


# ============================================================================
# FIELD HELPERS
# ============================================================================

def cents_to_decimal(value: Any, entity_type: EntityType, external_id: Optional[str], field_name: str) -> Decimal:
    """
    Convert integer minor units to currency units.

    >>> cents_to_decimal(150000, EntityType.INVOICE, "1", "total")
    Decimal('1500.00')
    """
    if value is None or value == "":
        return Decimal("0.00")
    if isinstance(value, bool):
        raise TransformError(entity_type.value, external_id, f"{field_name} is not numeric: {value!r}")
    try:
        return (Decimal(str(value)) / 100).quantize(CENTS)
    except InvalidOperation:
        raise TransformError(entity_type.value, external_id, f"{field_name} is not numeric: {value!r}")


def map_case_status(status: Optional[str]) -> str:
    """closed → completed, open/active → active, anything else → pending."""
    if not status:
        return "pending"
    return CASE_STATUS_MAP.get(str(status).strip().lower(), "pending")


def split_display_name(display_name: Optional[str]) -> Tuple[str, str]:
    """
    Split a combined name into (first, last).

    Single token → all of it is the first name. More tokens → the last
    token is the last name and the rest, joined, the first name.
    """
    tokens = (display_name or "").split()
    if not tokens:
        return "", ""
    if len(tokens) == 1:
        return tokens[0], ""
    return " ".join(tokens[:-1]), tokens[-1]


def is_organization_name(name: Optional[str]) -> bool:
    """Account names with no whitespace or a corporate suffix are organizations."""
    if not name or not name.strip():
        return False
    stripped = name.strip()
    return not any(ch.isspace() for ch in stripped) or bool(ORGANIZATION_PATTERN.search(stripped))


def _date_only(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return str(value).split("T")[0]


def _require_id(record: Dict[str, Any], entity_type: EntityType) -> str:
    external_id = external_id_of(record)
    if not external_id:
        raise TransformError(entity_type.value, None, "record has no id")
    return external_id


# ============================================================================
# ENTITY MAPPINGS
# ============================================================================

def transform_case(matter: Dict[str, Any], context: ResolverContext) -> Dict[str, Any]:
    """PracticePanther matter → cases row."""
    pp_id = _require_id(matter, EntityType.CASE)

    name = matter.get("display_name") or matter.get("matter_number")
    if not name:
        raise TransformError(EntityType.CASE.value, pp_id, "neither display_name nor matter_number present")

    return {
        "pp_id": pp_id,
        "name": name,
        "matter_number": matter.get("matter_number"),
        "status": map_case_status(matter.get("status")),
        "pp_matter_status": matter.get("status"),
        "practice_area": matter.get("practice_area"),
        "responsible_attorney": matter.get("responsible_attorney"),
        "opened_date": _date_only(matter.get("opened_date") or matter.get("open_date")),
        "closed_date": _date_only(matter.get("closed_date") or matter.get("close_date")),
        "account_ref_id": ref_external_id(matter, "account_ref"),
        "pp_created_at": matter.get("created_at"),
        "pp_updated_at": matter.get("updated_at"),
    }


def transform_contact(contact: Dict[str, Any], context: ResolverContext) -> Dict[str, Any]:
    """PracticePanther contact → contacts row, with individual/organization classification."""
    pp_id = _require_id(contact, EntityType.CONTACT)

    first_name = contact.get("first_name")
    last_name = contact.get("last_name")
    if first_name or last_name:
        first_name, last_name = first_name or "", last_name or ""
    else:
        first_name, last_name = split_display_name(contact.get("display_name"))

    account_name = ref_display_name(contact, "account_ref")
    is_organization = is_organization_name(account_name)

    return {
        "pp_id": pp_id,
        "first_name": first_name,
        "last_name": last_name,
        "display_name": contact.get("display_name"),
        "email": contact.get("email"),
        "phone_mobile": contact.get("phone_mobile"),
        "phone_home": contact.get("phone_home"),
        "phone_work": contact.get("phone_work"),
        "phone_fax": contact.get("phone_fax"),
        "company": account_name if is_organization else None,
        "contact_type": "organization" if is_organization else "individual",
        "account_ref_id": ref_external_id(contact, "account_ref"),
        "account_ref_name": account_name,
        "is_primary_contact": bool(contact.get("is_primary_contact")),
        "custom_field_values": contact.get("custom_field_values"),
        "pp_created_at": contact.get("created_at"),
        "pp_updated_at": contact.get("updated_at"),
    }


def transform_user(pp_user: Dict[str, Any], context: ResolverContext) -> Dict[str, Any]:
    """
    PracticePanther user → update for an existing internal user.

    Users are matched by email and never created; an unmatched user comes
    back with id=None and the writer skips it.
    """
    pp_user_id = _require_id(pp_user, EntityType.USER)
    existing = match_user(context, pp_user.get("email"))

    if existing and existing.get("pp_user_id") and str(existing["pp_user_id"]) != pp_user_id:
        raise TransformError(
            EntityType.USER.value, pp_user_id,
            f"internal user {existing['id']} is already bound to PracticePanther user {existing['pp_user_id']}"
        )

    if existing:
        claimed_by = context.claimed_users.get(existing["id"])
        if claimed_by is not None and claimed_by != pp_user_id:
            raise TransformError(
                EntityType.USER.value, pp_user_id,
                f"internal user {existing['id']} was already matched to PracticePanther user {claimed_by} in this batch"
            )
        context.claimed_users[existing["id"]] = pp_user_id

    return {
        "id": existing["id"] if existing else None,
        "pp_user_id": pp_user_id,
        "pp_display_name": pp_user.get("display_name"),
        "pp_is_active": pp_user.get("is_active"),
        "first_name": pp_user.get("first_name") or (existing or {}).get("first_name"),
        "last_name": pp_user.get("last_name") or (existing or {}).get("last_name"),
    }


def transform_task(task: Dict[str, Any], context: ResolverContext) -> Dict[str, Any]:
    """PracticePanther task → tasks row. Case link is NULL when the matter is unknown."""
    pp_id = _require_id(task, EntityType.TASK)
    matter_id = ref_external_id(task, CASE_REF.ref_field)

    return {
        "pp_id": pp_id,
        "title": task.get("subject"),
        "description": task.get("notes"),
        "status": "completed" if task.get("status") == "Completed" else "pending",
        "priority": str(task.get("priority") or "normal").lower(),
        "due_date": task.get("due_date"),
        "case_id": resolve(context, EntityType.CASE, matter_id),
        "matter_ref_id": matter_id,
        "matter_ref_name": ref_display_name(task, CASE_REF.ref_field),
        "assigned_to_users": task.get("assigned_to_users"),
        "assigned_to_contacts": task.get("assigned_to_contacts"),
        "tags": task.get("tags"),
        "pp_created_at": task.get("created_at"),
        "pp_updated_at": task.get("updated_at"),
    }


INVOICE_AMOUNT_FIELDS = ("subtotal", "tax", "discount", "total", "total_paid", "total_outstanding")


def derive_invoice_status(total_outstanding: Any, total_paid: Any) -> str:
    """
    outstanding == 0 → paid; otherwise paid > 0 → partial; otherwise unpaid.

    Works on the raw minor-unit values: a missing outstanding amount is
    unknown, not zero.
    """
    if total_outstanding is not None and total_outstanding != "" and Decimal(str(total_outstanding)) == 0:
        return "paid"
    if total_paid is not None and total_paid != "" and Decimal(str(total_paid)) > 0:
        return "partial"
    return "unpaid"


def transform_invoice(invoice: Dict[str, Any], context: ResolverContext) -> Dict[str, Any]:
    """PracticePanther invoice → invoices row with amounts in currency units."""
    pp_id = _require_id(invoice, EntityType.INVOICE)
    matter_id = ref_external_id(invoice, CASE_REF.ref_field)
    account_id = ref_external_id(invoice, CONTACT_REF.ref_field)

    # Converting first rejects non-numeric amounts before status looks at them
    amounts = {
        field_name: cents_to_decimal(invoice.get(field_name), EntityType.INVOICE, pp_id, field_name)
        for field_name in INVOICE_AMOUNT_FIELDS
    }

    return {
        "pp_id": pp_id,
        "case_id": resolve(context, EntityType.CASE, matter_id),
        "contact_id": resolve(context, EntityType.CONTACT, account_id),
        "invoice_number": str(invoice.get("invoice_number") or pp_id),
        "issue_date": _date_only(invoice.get("issue_date")),
        "due_date": _date_only(invoice.get("due_date")),
        "status": derive_invoice_status(invoice.get("total_outstanding"), invoice.get("total_paid")),
        "invoice_type": invoice.get("invoice_type"),
        **amounts,
        "items_time_entries": invoice.get("items_time_entries"),
        "items_expenses": invoice.get("items_expenses"),
        "items_flat_fees": invoice.get("items_flat_fees"),
        "pp_account_ref_id": account_id,
        "pp_matter_ref_id": matter_id,
        "pp_created_at": invoice.get("created_at"),
        "pp_updated_at": invoice.get("updated_at"),
    }


def transform_expense(expense: Dict[str, Any], context: ResolverContext) -> Dict[str, Any]:
    """PracticePanther expense → expenses row. Missing or zero quantity means 1."""
    pp_id = _require_id(expense, EntityType.EXPENSE)
    matter_id = ref_external_id(expense, CASE_REF.ref_field)

    return {
        "pp_id": pp_id,
        "case_id": resolve(context, EntityType.CASE, matter_id),
        "description": expense.get("description"),
        "expense_date": _date_only(expense.get("date")),
        "quantity": expense.get("qty") or 1,
        "price": cents_to_decimal(expense.get("price"), EntityType.EXPENSE, pp_id, "price"),
        "amount": cents_to_decimal(expense.get("amount"), EntityType.EXPENSE, pp_id, "amount"),
        "is_billable": bool(expense.get("is_billable")),
        "is_billed": bool(expense.get("is_billed")),
        "private_notes": expense.get("private_notes"),
        "expense_category": ref_display_name(expense, "expense_category_ref"),
        "pp_matter_ref_id": matter_id,
        "pp_account_ref_id": ref_external_id(expense, "account_ref"),
        "pp_billed_by_user_ref_id": ref_external_id(expense, "billed_by_user_ref"),
        "pp_created_at": expense.get("created_at"),
        "pp_updated_at": expense.get("updated_at"),
    }


TRANSFORMERS: Dict[EntityType, Callable[[Dict[str, Any], ResolverContext], Dict[str, Any]]] = {
    EntityType.CASE: transform_case,
    EntityType.CONTACT: transform_contact,
    EntityType.USER: transform_user,
    EntityType.TASK: transform_task,
    EntityType.INVOICE: transform_invoice,
    EntityType.EXPENSE: transform_expense,
}


def transform_record(entity_type: EntityType, record: Dict[str, Any], context: ResolverContext) -> Dict[str, Any]:
    return TRANSFORMERS[entity_type](record, context)
