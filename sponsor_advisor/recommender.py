"""Sponsorship recommendation matcher.

Provides:
- AbstractCandidateStore: query interface over published sponsorship packages
- InMemoryCandidateStore: list-backed store, loadable from a JSON seed file
- RecommendationMatcher: budget / radius / sport filter -> distance ranking -> top-K"""

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Set

from .config import MARKETPLACE_BASE_URL
from .models import CandidatePackage, SearchCriteria, TeamPackage
from .utils import haversine_km

logger = logging.getLogger(__name__)


class AbstractCandidateStore:
    """Interface for candidate stores."""

    async def search(self, criteria: SearchCriteria) -> Iterable[TeamPackage]:
        # Return raw rows that may satisfy the criteria; the matcher applies exact filters
        raise NotImplementedError

    async def team_names(self) -> Set[str]:
        # Return every team name the store knows about
        raise NotImplementedError


class InMemoryCandidateStore(AbstractCandidateStore):
    """Holds packages in a list. Used for local runs and tests."""

    def __init__(self, packages: Optional[Iterable[TeamPackage]] = None) -> None:
        self._packages: List[TeamPackage] = list(packages or [])

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryCandidateStore":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        packages = [TeamPackage(**row) for row in data.get("packages", [])]
        logger.info("Loaded %d packages from %s", len(packages), path)
        return cls(packages)

    def add(self, package: TeamPackage) -> None:
        self._packages.append(package)

    async def search(self, criteria: SearchCriteria) -> Iterable[TeamPackage]:
        # Coarse pre-filter only: published rows in the budget window.
        return [
            p for p in self._packages
            if p.status == "published" and criteria.budget_min <= p.price <= criteria.budget_max
        ]

    async def team_names(self) -> Set[str]:
        return {p.team_name for p in self._packages if p.team_name}


class RecommendationMatcher:
    """Filter -> distance/cost metrics -> rank by distance then price -> truncate."""

    def __init__(
        self,
        store: AbstractCandidateStore,
        marketplace_base_url: str = MARKETPLACE_BASE_URL,
    ) -> None:
        self.store = store
        self.marketplace_base_url = marketplace_base_url.rstrip("/")

    async def find_candidates(self, criteria: SearchCriteria) -> List[CandidatePackage]:
        """Return at most criteria.limit candidates, closest first. Empty is a valid result."""
        raw_rows = await self.store.search(criteria)

        candidates: List[CandidatePackage] = []
        for row in raw_rows:
            candidate = self._evaluate(row, criteria)
            if candidate is not None:
                candidates.append(candidate)

        ranked = sorted(candidates, key=lambda c: (c.distance_km, c.price))
        logger.debug(
            "find_candidates: %d matched, returning %d (radius=%skm, budget=%s-%s, sport=%s)",
            len(ranked), min(len(ranked), criteria.limit),
            criteria.radius_km, criteria.budget_min, criteria.budget_max, criteria.sport,
        )
        return ranked[: criteria.limit]

    async def known_team_names(self) -> Set[str]:
        return await self.store.team_names()

    def _evaluate(self, row: TeamPackage, criteria: SearchCriteria) -> Optional[CandidatePackage]:
        """Apply the exact filters to one row and build its candidate, or None."""
        if row.sponsorship_offer_id in criteria.exclude_offer_ids:
            return None
        if row.price is None or row.price <= 0:
            return None
        if not criteria.budget_min <= row.price <= criteria.budget_max:
            return None
        if criteria.sport and (row.sport or "").casefold() != criteria.sport.casefold():
            return None
        # Teams without coordinates can never be shown as "within" a radius
        if row.latitude is None or row.longitude is None:
            return None

        distance = haversine_km(criteria.origin, row.latitude, row.longitude)
        if distance > criteria.radius_km:
            return None

        reach = max(int(row.total_reach or 0), 0)
        cost_per_fan = row.price / reach if reach > 0 else None

        return CandidatePackage(
            team_profile_id=row.team_profile_id,
            team_name=row.team_name,
            sport=row.sport,
            distance_km=distance,
            total_reach=reach,
            sponsorship_offer_id=row.sponsorship_offer_id,
            package_id=row.package_id,
            package_name=row.package_name,
            price=row.price,
            estimated_cost_per_fan=cost_per_fan,
            marketplace_url=f"{self.marketplace_base_url}/{row.sponsorship_offer_id}",
            logo=row.logo,
            images=tuple(row.images) if row.images is not None else None,
        )
