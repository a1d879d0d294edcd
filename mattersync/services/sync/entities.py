"""
Entity Registry
Where each PracticePanther record type comes from and where it lands
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class EntityType(str, Enum):
    CASE = "cases"
    CONTACT = "contacts"
    USER = "users"
    TASK = "tasks"
    INVOICE = "invoices"
    EXPENSE = "expenses"


@dataclass(frozen=True)
class Reference:
    """A foreign reference carried by an external record (e.g. a task's matter_ref)."""
    target: EntityType
    ref_field: str  # e.g. "matter_ref"; the external id lives at record[ref_field]["id"]
    fk_column: str  # internal column receiving the resolved id


@dataclass(frozen=True)
class EntitySpec:
    entity_type: EntityType
    endpoint: str
    table: str
    external_id_column: str
    default_page_size: int
    references: Tuple[Reference, ...] = field(default_factory=tuple)


CASE_REF = Reference(target=EntityType.CASE, ref_field="matter_ref", fk_column="case_id")
CONTACT_REF = Reference(target=EntityType.CONTACT, ref_field="account_ref", fk_column="contact_id")


ENTITY_SPECS: Dict[EntityType, EntitySpec] = {
    EntityType.CASE: EntitySpec(EntityType.CASE, "/matters", "cases", "pp_id", 200),
    EntityType.CONTACT: EntitySpec(EntityType.CONTACT, "/contacts", "contacts", "pp_id", 100),
    EntityType.USER: EntitySpec(EntityType.USER, "/users", "users", "pp_user_id", 200),
    EntityType.TASK: EntitySpec(EntityType.TASK, "/tasks", "tasks", "pp_id", 1000, (CASE_REF,)),
    EntityType.INVOICE: EntitySpec(EntityType.INVOICE, "/invoices", "invoices", "pp_id", 200, (CASE_REF, CONTACT_REF)),
    EntityType.EXPENSE: EntitySpec(EntityType.EXPENSE, "/expenses", "expenses", "pp_id", 200, (CASE_REF,)),
}

# Cases first: tasks, invoices and expenses point at them.
# Contacts before invoices: billing contact.
SYNC_ORDER: Tuple[EntityType, ...] = (
    EntityType.CASE,
    EntityType.CONTACT,
    EntityType.USER,
    EntityType.TASK,
    EntityType.INVOICE,
    EntityType.EXPENSE,
)


def external_id_of(record: Dict[str, Any]) -> Optional[str]:
    """PracticePanther ids may be ints or strings; internally they are strings."""
    value = record.get("id")
    if value is None or value == "":
        return None
    return str(value)


def ref_external_id(record: Dict[str, Any], ref_field: str) -> Optional[str]:
    """Pull the external id out of a `{"id": ..., "display_name": ...}` reference."""
    ref = record.get(ref_field)
    if not isinstance(ref, dict):
        return None
    return external_id_of(ref)


def ref_display_name(record: Dict[str, Any], ref_field: str) -> Optional[str]:
    ref = record.get(ref_field)
    if not isinstance(ref, dict):
        return None
    return ref.get("display_name")
