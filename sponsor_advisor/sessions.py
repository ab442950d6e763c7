"""Per-user advisors sharing one set of collaborators.

Each user gets their own ConversationStore (and therefore their own active
conversation); the candidate store, repository, geocoder and text generator are
shared. Least recently used idle advisors are dropped past `max_advisors`; their
conversations reload from the repository on the next request.
"""

import json
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Optional

from .agent import SponsorshipAdvisor
from .config import GOOGLE_MAPS_API_KEY, MAX_CACHED_ADVISORS, SEED_DATA_PATH
from .conversation import ConversationStore
from .geocoder import AbstractGeocoder, GoogleGeocoder, StaticGeocoder
from .llm import AbstractTextGenerator, OpenAITextGenerator
from .models import Location
from .recommender import InMemoryCandidateStore, RecommendationMatcher
from .repository import AbstractAdvisorRepository, InMemoryAdvisorRepository

logger = logging.getLogger(__name__)


class AdvisorSessions:
    def __init__(
        self,
        repository: AbstractAdvisorRepository,
        matcher: RecommendationMatcher,
        geocoder: AbstractGeocoder,
        generator: AbstractTextGenerator,
        max_advisors: int = MAX_CACHED_ADVISORS,
    ) -> None:
        self.repository = repository
        self.matcher = matcher
        self.geocoder = geocoder
        self.generator = generator
        self.max_advisors = max_advisors
        self._advisors: "OrderedDict[str, SponsorshipAdvisor]" = OrderedDict()

    def for_user(self, user_id: str) -> SponsorshipAdvisor:
        advisor = self._advisors.get(user_id)
        if advisor is None:
            advisor = SponsorshipAdvisor(
                user_id=user_id,
                store=ConversationStore(),
                repository=self.repository,
                matcher=self.matcher,
                geocoder=self.geocoder,
                generator=self.generator,
            )
            self._advisors[user_id] = advisor
            self._evict_idle()
        else:
            self._advisors.move_to_end(user_id)
        return advisor

    def _evict_idle(self) -> None:
        # The newest entry is the advisor being handed out
        for user_id in list(self._advisors)[:-1]:
            if len(self._advisors) <= self.max_advisors:
                return
            if self._advisors[user_id].is_idle:
                del self._advisors[user_id]
                logger.debug("Dropped cached advisor for %s", user_id)

    @classmethod
    def from_config(cls, seed_path: Optional[str] = SEED_DATA_PATH) -> "AdvisorSessions":
        """Build sessions from the seed file and environment settings."""
        if seed_path and Path(seed_path).exists():
            candidate_store = InMemoryCandidateStore.from_json_file(seed_path)
            repository = InMemoryAdvisorRepository.from_json_file(seed_path)
        else:
            logger.warning("Seed data %s not found, starting with empty stores", seed_path)
            candidate_store = InMemoryCandidateStore()
            repository = InMemoryAdvisorRepository()

        if GOOGLE_MAPS_API_KEY:
            geocoder: AbstractGeocoder = GoogleGeocoder(GOOGLE_MAPS_API_KEY)
        else:
            logger.info("GOOGLE_MAPS_API_KEY not set, using the seed postal code table")
            geocoder = _static_geocoder_from_seed(seed_path)

        return cls(
            repository=repository,
            matcher=RecommendationMatcher(candidate_store),
            geocoder=geocoder,
            generator=OpenAITextGenerator(),
        )


def _static_geocoder_from_seed(seed_path: Optional[str]) -> StaticGeocoder:
    if not seed_path or not Path(seed_path).exists():
        return StaticGeocoder()
    data = json.loads(Path(seed_path).read_text(encoding="utf-8"))
    postal_codes = {code: Location(**point) for code, point in data.get("postal_codes", {}).items()}
    return StaticGeocoder(by_postal_code=postal_codes)
