"""Youth sports sponsorship advisor."""

from .agent import SponsorshipAdvisor
from .conversation import ConversationStore
from .errors import AdvisorError
from .models import AdvisorFilters, CandidatePackage, SearchCriteria, TurnResult
from .recommender import RecommendationMatcher
from .sessions import AdvisorSessions

__all__ = [
    "AdvisorError",
    "AdvisorFilters",
    "AdvisorSessions",
    "CandidatePackage",
    "ConversationStore",
    "RecommendationMatcher",
    "SearchCriteria",
    "SponsorshipAdvisor",
    "TurnResult",
]
