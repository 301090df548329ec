"""Entity resolver: maps what the client typed ("haircut and beard",
"Joao") to a concrete service or professional of the tenant.

Resolution order:
  1. Identifier (UUID) → direct lookup, still tenant-scoped.
  2. Exact case-insensitive name match → returned on a single hit.
  3. Term search + scoring over active candidates:

        score = TERM_WEIGHT * matched_terms
              + LENGTH_BONUS  if |len(candidate) - len(query)| < LENGTH_TOLERANCE
              + BUNDLE_BONUS  if the candidate name looks like a bundle

     The best candidate is accepted only when ``score > MIN_SCORE``.

Bundle-looking names ("Haircut and Beard", "Corte e Barba") are favoured
so a combined request resolves to the single catalog entry instead of two
bookings.  The weights are tuning knobs, kept in ``ResolverWeights``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from booking_agent.errors import AmbiguousMatchError, NotFoundError
from booking_agent.services.booking_store import BookingStore
from booking_agent.services.database import Professional, Service

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

# English and Portuguese conjunctions seen in combined requests
_CONJUNCTIONS = ("and", "with", "plus", "e", "com", "mais")
_SPLIT_RE = re.compile(
    r"\s*[,&+]\s*|\s+(?:" + "|".join(_CONJUNCTIONS) + r")\s+|\s+",
    re.IGNORECASE,
)
_BUNDLE_MARKERS = (" and ", " with ", " plus ", " e ", " com ", " mais ", "&", ",", "+")

MIN_TERM_LENGTH = 3


@dataclass(frozen=True)
class ResolverWeights:
    term_weight: int = 10
    length_bonus: int = 1
    length_tolerance: int = 5
    bundle_bonus: int = 2
    min_score: int = 5


def is_identifier(value: str) -> bool:
    return bool(UUID_RE.match(value.strip()))


def tokenize(query: str) -> list[str]:
    """Split a query on conjunctions/separators, keeping terms longer than 2."""
    terms = []
    for term in _SPLIT_RE.split(query.strip().lower()):
        if len(term) >= MIN_TERM_LENGTH and term not in _CONJUNCTIONS and term not in terms:
            terms.append(term)
    return terms


def score_candidate(name: str, query: str, terms: list[str], weights: ResolverWeights) -> int:
    candidate = name.strip().lower()
    cleaned = query.strip().lower()
    matched = sum(1 for t in terms if t in candidate)
    score = matched * weights.term_weight
    if abs(len(candidate) - len(cleaned)) < weights.length_tolerance:
        score += weights.length_bonus
    if any(marker in candidate for marker in _BUNDLE_MARKERS):
        score += weights.bundle_bonus
    return score


class EntityResolver:
    def __init__(self, store: BookingStore, weights: ResolverWeights | None = None):
        self._store = store
        self._weights = weights or ResolverWeights()

    def resolve_service(self, tenant_id: str, reference: str) -> Service:
        return self.resolve("service", tenant_id, reference)

    def resolve_professional(self, tenant_id: str, reference: str) -> Professional:
        return self.resolve("professional", tenant_id, reference)

    def resolve(self, kind: str, tenant_id: str, reference: str) -> Service | Professional:
        query = (reference or "").strip()
        if not query:
            raise NotFoundError(f"No {kind} was specified.")

        if is_identifier(query):
            record = self._store.get_entity(kind, tenant_id, query)
            if record is None:
                raise NotFoundError(f"No {kind} with id {query}.")
            return record

        exact = self._store.find_by_exact_name(kind, tenant_id, query)
        if len(exact) == 1:
            return exact[0]

        terms = tokenize(query)
        candidates = exact or self._store.find_by_terms(kind, tenant_id, terms)
        if not candidates:
            raise NotFoundError(f'No {kind} matches "{query}".')

        # max() keeps the first of equal scores; candidates arrive sorted by name
        scored = [(score_candidate(c.name, query, terms, self._weights), c) for c in candidates]
        best_score, best = max(scored, key=lambda pair: pair[0])
        logger.debug(
            "Resolver %s %r: %s",
            kind, query, ", ".join(f"{c.name}={s}" for s, c in scored),
        )

        if best_score <= self._weights.min_score:
            raise AmbiguousMatchError(
                f'"{query}" does not clearly match any {kind}.',
                candidates=[c.name for _, c in scored],
            )
        logger.info('Resolved %s "%s" to "%s" (score %d)', kind, query, best.name, best_score)
        return best
