"""
Identifier Resolution
Maps PracticePanther foreign references to internal primary keys

One bulk lookup per referenced table per entity step: collect every external
id the batch points at, query once with an IN filter, index by
(entity type, external id). Unresolved references are not errors; the
dependent row is written with a NULL foreign key.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from supabase import Client

from mattersync.services.sync.entities import (
    ENTITY_SPECS,
    EntityType,
    ref_external_id,
)

logger = logging.getLogger(__name__)

# Keeps IN (...) filters well below PostgREST URL length limits
LOOKUP_CHUNK_SIZE = 200


@dataclass
class ResolverContext:
    """Per-step index of external foreign ids → internal ids."""
    entity_type: EntityType
    index: Dict[Tuple[EntityType, str], Any] = field(default_factory=dict)
    users_by_email: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    misses: Dict[EntityType, Set[str]] = field(default_factory=dict)
    # internal user id → PracticePanther user id bound to it earlier in this step
    claimed_users: Dict[Any, str] = field(default_factory=dict)

    def record_miss(self, ref_type: EntityType, external_id: str) -> None:
        self.misses.setdefault(ref_type, set()).add(external_id)

    @property
    def miss_count(self) -> int:
        return sum(len(ids) for ids in self.misses.values())


def _chunks(values: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class IdentifierResolver:
    """Builds ResolverContext objects against the internal store."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def build_context(self, entity_type: EntityType, batch: List[Dict[str, Any]]) -> ResolverContext:
        context = ResolverContext(entity_type=entity_type)
        spec = ENTITY_SPECS[entity_type]

        for reference in spec.references:
            wanted = sorted({
                ext_id for ext_id in (ref_external_id(record, reference.ref_field) for record in batch)
                if ext_id
            })
            if not wanted:
                continue

            if reference.target == EntityType.CASE:
                self._index_cases(context, wanted)
            elif reference.target == EntityType.CONTACT:
                self._index_contacts_by_account(context, wanted)

        if entity_type == EntityType.USER and batch:
            self._index_users_by_email(context)

        logger.debug(f"Resolver context for {entity_type.value}: {len(context.index)} references indexed")
        return context

    def _index_cases(self, context: ResolverContext, external_ids: List[str]) -> None:
        for chunk in _chunks(external_ids, LOOKUP_CHUNK_SIZE):
            result = self.supabase.table("cases").select("id, pp_id").in_("pp_id", chunk).execute()
            for row in result.data or []:
                context.index[(EntityType.CASE, str(row["pp_id"]))] = row["id"]

    def _index_contacts_by_account(self, context: ResolverContext, account_ids: List[str]) -> None:
        """
        Invoices bill an account, not a contact. Pick one contact per account
        independent of row order: primary contacts first, then lowest pp_id.
        """
        best: Dict[str, Tuple[Tuple[bool, str], Any]] = {}
        for chunk in _chunks(account_ids, LOOKUP_CHUNK_SIZE):
            result = (
                self.supabase.table("contacts")
                .select("id, pp_id, account_ref_id, is_primary_contact")
                .in_("account_ref_id", chunk)
                .execute()
            )
            for row in result.data or []:
                account_id = str(row["account_ref_id"])
                rank = (not row.get("is_primary_contact"), str(row.get("pp_id") or ""))
                if account_id not in best or rank < best[account_id][0]:
                    best[account_id] = (rank, row["id"])

        for account_id, (_, contact_id) in best.items():
            context.index[(EntityType.CONTACT, account_id)] = contact_id

    def _index_users_by_email(self, context: ResolverContext) -> None:
        # Case-insensitive equality; ILIKE would treat "_" in addresses as a wildcard
        result = self.supabase.table("users").select("id, email, pp_user_id").execute()
        for row in result.data or []:
            email = row.get("email")
            if email:
                context.users_by_email[email.strip().lower()] = row


def resolve(context: ResolverContext, ref_type: EntityType, external_id: Optional[str]) -> Optional[Any]:
    """Internal id for (ref_type, external_id), or None when unknown."""
    if not external_id:
        return None
    internal_id = context.index.get((ref_type, str(external_id)))
    if internal_id is None:
        context.record_miss(ref_type, str(external_id))
    return internal_id


def match_user(context: ResolverContext, email: Optional[str]) -> Optional[Dict[str, Any]]:
    """Existing internal user row for an email, compared case-insensitively."""
    if not email:
        return None
    return context.users_by_email.get(email.strip().lower())
