"""Persisted advisor state.

Logical layout, independent of the backing store:
- conversations: id, user id, business profile id, last activity, metadata (preferences)
- messages: id, conversation id, role, content, created_at
- recommendations: conversation id, message id, sponsorship offer id, package id,
  recommendation reason, full candidate payload (JSON), user action
- business profiles and persistent user preferences, both keyed by user id

AbstractAdvisorRepository is the async interface the advisor depends on.
InMemoryAdvisorRepository keeps the tables in dicts and stores recommendation
payloads as JSON text, so reloads go through a real encode/decode.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import (
    BusinessProfile,
    CandidatePackage,
    ConversationMessage,
    Location,
    SavedPreferences,
    utcnow,
)
from .utils import serialize_candidate

logger = logging.getLogger(__name__)

DEFAULT_RECOMMENDATION_REASON = "AI recommendation based on user query"


class AbstractAdvisorRepository:
    """Interface for advisor persistence."""

    async def create_conversation(
        self, conversation_id: str, user_id: str, preferences: Optional[SavedPreferences]
    ) -> str:
        raise NotImplementedError

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def update_conversation_preferences(
        self, conversation_id: str, preferences: SavedPreferences
    ) -> None:
        raise NotImplementedError

    async def touch_conversation(self, conversation_id: str) -> None:
        raise NotImplementedError

    async def delete_conversation(self, conversation_id: str) -> None:
        raise NotImplementedError

    async def insert_message(self, conversation_id: str, message: ConversationMessage) -> str:
        raise NotImplementedError

    async def delete_message(self, message_id: str) -> None:
        raise NotImplementedError

    async def insert_recommendations(
        self,
        conversation_id: str,
        message_id: str,
        candidates: List[CandidatePackage],
        reason: str = DEFAULT_RECOMMENDATION_REASON,
    ) -> int:
        raise NotImplementedError

    async def load_messages(self, conversation_id: str) -> List[ConversationMessage]:
        raise NotImplementedError

    async def record_user_action(
        self, conversation_id: str, sponsorship_offer_id: str, package_id: str, action: str
    ) -> bool:
        raise NotImplementedError

    async def list_user_actions(self, conversation_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_business_profile(self, user_id: str) -> Optional[BusinessProfile]:
        raise NotImplementedError

    async def update_business_location(
        self, user_id: str, location: Location, zip_code: Optional[str]
    ) -> None:
        raise NotImplementedError

    async def get_user_preferences(self, user_id: str) -> Optional[SavedPreferences]:
        raise NotImplementedError

    async def upsert_user_preferences(self, user_id: str, preferences: SavedPreferences) -> None:
        raise NotImplementedError


def rebuild_messages(
    message_rows: List[Dict[str, Any]], recommendation_rows: List[Dict[str, Any]]
) -> List[ConversationMessage]:
    """Join message rows with their recommendation rows.

    Messages without recommendation rows get recommendations=None, not an empty tuple.
    """
    by_message: Dict[str, List[CandidatePackage]] = {}
    for rec in recommendation_rows:
        payload = rec.get("recommendation_data")
        if not payload:
            continue
        if isinstance(payload, str):
            payload = json.loads(payload)
        by_message.setdefault(rec["message_id"], []).append(CandidatePackage.from_dict(payload))

    ordered = sorted(message_rows, key=lambda row: (row["created_at"], row["seq"]))
    return [
        ConversationMessage(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            timestamp=row["created_at"],
            recommendations=tuple(by_message[row["id"]]) if row["id"] in by_message else None,
        )
        for row in ordered
    ]


class InMemoryAdvisorRepository(AbstractAdvisorRepository):
    def __init__(self, business_profiles: Optional[List[BusinessProfile]] = None) -> None:
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.recommendations: List[Dict[str, Any]] = []
        self.business_profiles: Dict[str, BusinessProfile] = {
            p.user_id: p for p in (business_profiles or [])
        }
        self.user_preferences: Dict[str, Dict[str, Any]] = {}
        self._seq = 0

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryAdvisorRepository":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        profiles = []
        for row in data.get("business_profiles", []):
            row = dict(row)
            location = row.pop("location", None)
            profiles.append(BusinessProfile(**row, location=Location(**location) if location else None))
        logger.info("Loaded %d business profiles from %s", len(profiles), path)
        return cls(profiles)

    # Conversations

    async def create_conversation(
        self, conversation_id: str, user_id: str, preferences: Optional[SavedPreferences]
    ) -> str:
        profile = self.business_profiles.get(user_id)
        self.conversations[conversation_id] = {
            "id": conversation_id,
            "user_id": user_id,
            "business_profile_id": profile.id if profile else None,
            "channel": "in-app",
            "last_activity": utcnow(),
            "metadata": {"preferences": preferences.to_dict() if preferences else {}},
        }
        return conversation_id

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        row = self.conversations.get(conversation_id)
        return dict(row) if row else None

    async def update_conversation_preferences(
        self, conversation_id: str, preferences: SavedPreferences
    ) -> None:
        row = self.conversations[conversation_id]
        row["metadata"] = {**row["metadata"], "preferences": preferences.to_dict()}
        row["last_activity"] = utcnow()

    async def touch_conversation(self, conversation_id: str) -> None:
        self.conversations[conversation_id]["last_activity"] = utcnow()

    async def delete_conversation(self, conversation_id: str) -> None:
        self.conversations.pop(conversation_id, None)
        doomed = {mid for mid, m in self.messages.items() if m["conversation_id"] == conversation_id}
        for mid in doomed:
            del self.messages[mid]
        self.recommendations = [r for r in self.recommendations if r["conversation_id"] != conversation_id]

    # Messages

    async def insert_message(self, conversation_id: str, message: ConversationMessage) -> str:
        if conversation_id not in self.conversations:
            raise KeyError(f"conversation {conversation_id} does not exist")
        self._seq += 1
        self.messages[message.id] = {
            "id": message.id,
            "conversation_id": conversation_id,
            "role": message.role,
            "content": message.content,
            "created_at": message.timestamp,
            "seq": self._seq,
        }
        return message.id

    async def delete_message(self, message_id: str) -> None:
        self.messages.pop(message_id, None)
        self.recommendations = [r for r in self.recommendations if r["message_id"] != message_id]

    async def insert_recommendations(
        self,
        conversation_id: str,
        message_id: str,
        candidates: List[CandidatePackage],
        reason: str = DEFAULT_RECOMMENDATION_REASON,
    ) -> int:
        created_at = utcnow()
        for candidate in candidates:
            self.recommendations.append(
                {
                    "id": str(uuid.uuid4()),
                    "conversation_id": conversation_id,
                    "message_id": message_id,
                    "sponsorship_offer_id": candidate.sponsorship_offer_id,
                    "package_id": candidate.package_id,
                    "recommendation_reason": reason,
                    "recommendation_data": json.dumps(serialize_candidate(candidate)),
                    "user_action": None,
                    "created_at": created_at,
                }
            )
        return len(candidates)

    async def load_messages(self, conversation_id: str) -> List[ConversationMessage]:
        rows = [m for m in self.messages.values() if m["conversation_id"] == conversation_id]
        recs = [r for r in self.recommendations if r["conversation_id"] == conversation_id]
        return rebuild_messages(rows, recs)

    # Feedback on recommendations

    async def record_user_action(
        self, conversation_id: str, sponsorship_offer_id: str, package_id: str, action: str
    ) -> bool:
        updated = False
        for rec in self.recommendations:
            if (
                rec["conversation_id"] == conversation_id
                and rec["sponsorship_offer_id"] == sponsorship_offer_id
                and rec["package_id"] == package_id
            ):
                rec["user_action"] = action
                rec["action_at"] = utcnow()
                updated = True
        return updated

    async def list_user_actions(self, conversation_id: str) -> List[Dict[str, Any]]:
        acted = [
            r for r in self.recommendations
            if r["conversation_id"] == conversation_id and r["user_action"] is not None
        ]
        acted.sort(key=lambda r: r.get("action_at") or r["created_at"], reverse=True)
        result = []
        for rec in acted[:10]:
            payload = json.loads(rec["recommendation_data"])
            result.append(
                {
                    "action": rec["user_action"],
                    "sponsorship_offer_id": rec["sponsorship_offer_id"],
                    "package_id": rec["package_id"],
                    "sport": payload.get("sport"),
                }
            )
        return result

    # Business profiles and user preferences

    async def get_business_profile(self, user_id: str) -> Optional[BusinessProfile]:
        return self.business_profiles.get(user_id)

    async def update_business_location(
        self, user_id: str, location: Location, zip_code: Optional[str]
    ) -> None:
        profile = self.business_profiles.get(user_id)
        if profile is None:
            profile = BusinessProfile(id=str(uuid.uuid4()), user_id=user_id)
            self.business_profiles[user_id] = profile
        profile.location = location
        if zip_code:
            profile.zip_code = zip_code

    async def get_user_preferences(self, user_id: str) -> Optional[SavedPreferences]:
        row = self.user_preferences.get(user_id)
        if row is None:
            return None
        return SavedPreferences.from_dict(row["preferences"])

    async def upsert_user_preferences(self, user_id: str, preferences: SavedPreferences) -> None:
        self.user_preferences[user_id] = {
            "preferences": preferences.to_dict(),
            "last_updated": utcnow(),
        }

