"""
Duplicate contact detection and safe deletion.

Analysis ranks name-matching contacts by how many important fields they have
filled in: the most complete record is kept, the others are offered for
deletion. Deletion only ever happens one canonical id at a time after an
ownership check.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..errors import NotFoundError
from ..storage.base import EntityStore, CONTACTS
from ..utils.logger import logger
from .validation import require_canonical_id

IMPORTANT_FIELDS = (
    'email', 'phone', 'mobile_phone', 'work_phone', 'company', 'job_title',
    'street_address', 'city', 'birthday', 'notes', 'website'
)


def _is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ''
    return True


def display_name(contact: Dict[str, Any]) -> str:
    return ' '.join(p for p in (contact.get('first_name'), contact.get('last_name')) if p) or 'Unnamed contact'


@dataclass
class ScoredCandidate:
    contact: Dict[str, Any]
    filled_count: int
    filled_fields: List[str]

    @property
    def contact_id(self) -> str:
        return self.contact.get('contact_id')

    def summary(self) -> Dict[str, Any]:
        return {
            'contact_id': self.contact_id,
            'name': display_name(self.contact),
            'email': self.contact.get('email'),
            'phone': self.contact.get('phone'),
            'company': self.contact.get('company'),
            'updated_at': self.contact.get('updated_at'),
            'filled_count': self.filled_count,
            'filled_fields': self.filled_fields,
        }


@dataclass
class DuplicateAnalysis:
    candidates: List[ScoredCandidate] = field(default_factory=list)
    keep: Optional[str] = None
    consider_deleting: List[str] = field(default_factory=list)
    reason: str = ''
    message: str = ''

    @property
    def has_duplicates(self) -> bool:
        return bool(self.consider_deleting)

    def to_result(self) -> Dict[str, Any]:
        result = {
            'success': True,
            'operation': 'analyze',
            'duplicates_found': self.has_duplicates,
            'total_candidates': len(self.candidates),
            'candidates': [c.summary() for c in self.candidates],
            'message': self.message,
        }
        if self.has_duplicates:
            result['recommendation'] = {
                'keep': self.keep,
                'consider_deleting': list(self.consider_deleting),
                'reason': self.reason,
            }
        return result


class DuplicateResolutionEngine:
    def __init__(self, store: EntityStore, important_fields: Sequence[str] = IMPORTANT_FIELDS):
        self.store = store
        self.important_fields = tuple(important_fields)

    def score(self, contact: Dict[str, Any], important_fields: Optional[Sequence[str]] = None) -> ScoredCandidate:
        fields = important_fields or self.important_fields
        filled = [f for f in fields if _is_filled(contact.get(f))]
        return ScoredCandidate(contact=contact, filled_count=len(filled), filled_fields=filled)

    def analyze(
        self,
        candidates: Sequence[Dict[str, Any]],
        important_fields: Optional[Sequence[str]] = None,
        search_term: str = ''
    ) -> DuplicateAnalysis:
        """
        Rank candidate contacts by completeness.

        Args:
            candidates: Name-matching contacts, most recently updated first
            important_fields: Override of the fields that count towards completeness
            search_term: Text used to find the candidates, for messages only

        Returns:
            DuplicateAnalysis with keep/consider_deleting populated when there are at least two candidates
        """
        label = f" matching '{search_term}'" if search_term else ''

        if not candidates:
            return DuplicateAnalysis(message=f"No contacts found{label}.")

        scored = [self.score(c, important_fields) for c in candidates]

        if len(scored) == 1:
            return DuplicateAnalysis(
                candidates=scored,
                message=f"Only one contact found{label}, so no duplicates were detected."
            )

        # sorted() is stable: equal scores keep the most-recently-updated order
        ranked = sorted(scored, key=lambda c: c.filled_count, reverse=True)
        keeper = ranked[0]
        others = ranked[1:]

        reason = (
            f"{display_name(keeper.contact)} ({keeper.contact_id}) has the most complete information "
            f"with {keeper.filled_count} important fields filled"
        )
        if keeper.filled_fields:
            reason += f": {', '.join(keeper.filled_fields)}"

        logger.info(f"🔍 Duplicate analysis: keep {keeper.contact_id}, {len(others)} candidate(s) to delete")

        return DuplicateAnalysis(
            candidates=ranked,
            keep=keeper.contact_id,
            consider_deleting=[c.contact_id for c in others],
            reason=reason,
            message=f"Found {len(ranked)} contacts{label}. Recommend keeping the most complete record and deleting {len(others)}."
        )

    async def delete_candidate(self, user_id: str, candidate_id: str) -> Dict[str, Any]:
        require_canonical_id(candidate_id, 'contact_id', hint="Run a duplicate analysis first and use the contact_id it returns.")

        contact = await self.store.get(CONTACTS, user_id, candidate_id)
        if contact is None:
            raise NotFoundError(f"Contact {candidate_id} was not found or does not belong to you.")

        deleted = await self.store.delete(CONTACTS, user_id, candidate_id)
        if not deleted:
            raise NotFoundError(f"Contact {candidate_id} was not found or does not belong to you.")

        logger.info(f"🗑️ Deleted duplicate contact {candidate_id} for user {user_id}")
        return {
            'success': True,
            'operation': 'delete',
            'deleted_contact_id': candidate_id,
            'deleted_contact': {
                'contact_id': candidate_id,
                'name': display_name(contact),
                'email': contact.get('email'),
            },
            'message': f"Deleted duplicate contact {display_name(contact)}.",
        }
