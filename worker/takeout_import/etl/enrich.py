"""Fill in missing coordinates for a collection's candidates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Protocol

from takeout_import.etl.gazetteer import Gazetteer, ReferencePoint
from takeout_import.models import CandidateCollection, LookupResult, RawPlaceCandidate

logger = logging.getLogger(__name__)

FALLBACK_OFFSET_STEP = 0.001
APPROXIMATE_SUFFIX = "(location approximate)"


class LookupService(Protocol):
    def submit(self, query: str) -> Optional[LookupResult]:
        ...


@dataclass
class EnrichmentOutcome:
    collection: CandidateCollection
    reference: ReferencePoint
    lookups: int = 0
    approximate: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def places(self) -> List[RawPlaceCandidate]:
        return self.collection.candidates


class EnrichmentStage:
    """Resolve coordinates through the lookup queue, falling back to a placeholder.

    Candidates that already carry coordinates are passed through untouched.
    The others are looked up one at a time; when no match comes back they are
    placed at the collection's reference point plus ``offset_step`` times
    their position in the collection, so no two placeholders coincide.
    """

    def __init__(
        self,
        lookup: Optional[LookupService],
        gazetteer: Optional[Gazetteer] = None,
        *,
        offset_step: float = FALLBACK_OFFSET_STEP,
    ) -> None:
        self.lookup = lookup
        self.gazetteer = gazetteer or Gazetteer()
        self.offset_step = offset_step

    def enrich(self, collection: CandidateCollection, *, skip_lookup: bool = False) -> EnrichmentOutcome:
        reference = self.gazetteer.reference_point(collection.name)
        outcome = EnrichmentOutcome(collection=replace(collection, candidates=[]), reference=reference)

        for ordinal, candidate in enumerate(collection.candidates):
            if candidate.has_coordinates:
                outcome.collection.candidates.append(candidate)
                continue

            if not candidate.name and not candidate.address:
                outcome.warnings.append(f"Dropped unusable place {ordinal + 1} in {collection.name}")
                continue

            match = None
            if not skip_lookup and self.lookup is not None:
                outcome.lookups += 1
                match = self.lookup.submit(candidate.address or candidate.name)

            if match is not None:
                outcome.collection.candidates.append(
                    replace(
                        candidate,
                        latitude=match.latitude,
                        longitude=match.longitude,
                        address=candidate.address or match.display_name,
                    )
                )
                continue

            logger.debug("Using placeholder coordinates for: %s", candidate.name)
            outcome.collection.candidates.append(self.place_approximately(candidate, reference, ordinal))
            outcome.approximate += 1

        if outcome.approximate:
            outcome.warnings.append(
                f"Used approximate locations for {outcome.approximate} places in {collection.name}"
            )
        logger.info(
            "Enriched %s: %d places, %d lookups, %d approximate",
            collection.name,
            len(outcome.places),
            outcome.lookups,
            outcome.approximate,
        )
        return outcome

    def place_approximately(
        self, candidate: RawPlaceCandidate, reference: ReferencePoint, ordinal: int
    ) -> RawPlaceCandidate:
        offset = ordinal * self.offset_step
        return replace(
            candidate,
            latitude=reference.latitude + offset,
            longitude=reference.longitude + offset,
            address=f"{candidate.address or candidate.name} {APPROXIMATE_SUFFIX}",
            approximate=True,
        )
