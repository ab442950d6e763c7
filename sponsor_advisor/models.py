# Data models for search, recommendations and conversations.
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .errors import InputError, UnresolvedLocationError

ROLES = ("user", "assistant")
USER_ACTIONS = ("clicked", "interested", "saved", "not_interested")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class SearchCriteria:
    """Inputs to one Matcher invocation. Validated on construction."""

    origin: Location
    radius_km: float
    budget_min: float
    budget_max: float
    sport: Optional[str] = None
    limit: int = 3
    exclude_offer_ids: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.origin is None:
            raise UnresolvedLocationError()
        if self.radius_km is None or self.radius_km <= 0:
            raise InputError("Search radius must be greater than zero.")
        if self.budget_min is None or self.budget_min < 0:
            raise InputError("Minimum budget must not be negative.")
        if self.budget_max is None or self.budget_max < self.budget_min:
            raise InputError("Maximum budget must be at least the minimum budget.")
        if self.limit < 1:
            raise InputError("Result limit must be a positive integer.")


@dataclass
class TeamPackage:
    """One purchasable package as stored in the candidate store."""

    team_profile_id: str
    team_name: str
    sponsorship_offer_id: str
    package_id: str
    package_name: str
    price: float
    sport: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    total_reach: int = 0
    logo: Optional[str] = None
    images: Optional[List[str]] = None
    status: str = "published"


@dataclass(frozen=True)
class CandidatePackage:
    """A package returned by one search, with distance and cost-per-fan computed."""

    team_profile_id: str
    team_name: str
    sport: Optional[str]
    distance_km: float
    total_reach: int
    sponsorship_offer_id: str
    package_id: str
    package_name: str
    price: float
    estimated_cost_per_fan: Optional[float]
    marketplace_url: str
    logo: Optional[str] = None
    images: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidatePackage":
        images = data.get("images")
        return cls(
            team_profile_id=data["team_profile_id"],
            team_name=data["team_name"],
            sport=data.get("sport"),
            distance_km=float(data["distance_km"]),
            total_reach=int(data["total_reach"]),
            sponsorship_offer_id=data["sponsorship_offer_id"],
            package_id=data["package_id"],
            package_name=data["package_name"],
            price=float(data["price"]),
            estimated_cost_per_fan=data.get("estimated_cost_per_fan"),
            marketplace_url=data["marketplace_url"],
            logo=data.get("logo"),
            images=tuple(images) if images is not None else None,
        )


@dataclass(frozen=True)
class ConversationMessage:
    id: str
    role: str
    content: str
    timestamp: datetime
    recommendations: Optional[Tuple[CandidatePackage, ...]] = None

    @classmethod
    def create(
        cls,
        role: str,
        content: str,
        recommendations: Optional[List[CandidatePackage]] = None,
    ) -> "ConversationMessage":
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role}")
        return cls(
            id=str(uuid.uuid4()),
            role=role,
            content=content,
            timestamp=utcnow(),
            recommendations=tuple(recommendations) if recommendations else None,
        )


@dataclass(frozen=True)
class SavedPreferences:
    sports: Optional[Tuple[str, ...]] = None
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    radius_km: Optional[float] = None

    def merge(self, other: Optional["SavedPreferences"]) -> "SavedPreferences":
        """Last write wins, field by field; unset fields in `other` keep our value."""
        if other is None:
            return self
        updates = {k: v for k, v in other.to_dict().items() if v is not None}
        if "sports" in updates:
            updates["sports"] = tuple(updates["sports"])
        return replace(self, **updates)

    def is_empty(self) -> bool:
        return all(v is None for v in self.to_dict().values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sports": list(self.sports) if self.sports is not None else None,
            "budget_min": self.budget_min,
            "budget_max": self.budget_max,
            "radius_km": self.radius_km,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SavedPreferences":
        data = data or {}
        sports = data.get("sports")
        return cls(
            sports=tuple(sports) if sports else None,
            budget_min=data.get("budget_min"),
            budget_max=data.get("budget_max"),
            radius_km=data.get("radius_km"),
        )


@dataclass(frozen=True)
class AdvisorFilters:
    """Explicit per-turn filters supplied by the caller."""

    sport: Optional[str] = None
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    radius_km: Optional[float] = None

    def validate(self) -> None:
        if self.radius_km is not None and self.radius_km <= 0:
            raise InputError("radiusKm must be greater than zero.")
        if self.budget_min is not None and self.budget_min < 0:
            raise InputError("budgetMin must not be negative.")
        if self.budget_max is not None and self.budget_max < 0:
            raise InputError("budgetMax must not be negative.")
        if (
            self.budget_min is not None
            and self.budget_max is not None
            and self.budget_min > self.budget_max
        ):
            raise InputError("budgetMin must not exceed budgetMax.")

    def as_preferences(self) -> SavedPreferences:
        return SavedPreferences(
            sports=(self.sport,) if self.sport else None,
            budget_min=self.budget_min,
            budget_max=self.budget_max,
            radius_km=self.radius_km,
        )


@dataclass(frozen=True)
class Conversation:
    id: str
    title: str = "New Conversation"
    messages: Tuple[ConversationMessage, ...] = ()
    preferences: Optional[SavedPreferences] = None
    last_activity: datetime = field(default_factory=utcnow)
    server_conversation_id: Optional[str] = None


@dataclass
class BusinessProfile:
    id: str
    user_id: str
    business_name: Optional[str] = None
    industry: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    location: Optional[Location] = None


@dataclass(frozen=True)
class TurnResult:
    conversation_id: str
    assistant_text: str
    recommendations: Optional[Tuple[CandidatePackage, ...]]
    message_id: str
