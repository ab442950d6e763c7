"""Utility functions for the sponsorship advisor."""
import math
from dataclasses import asdict
from typing import Any, Dict, Optional

from .config import EARTH_RADIUS_KM
from .models import CandidatePackage, ConversationMessage, Location


def haversine_km(origin: Location, latitude: float, longitude: float) -> float:
    """Great-circle distance in kilometers between origin and (latitude, longitude)."""
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(longitude - origin.longitude)
    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def serialize_candidate(c: CandidatePackage) -> Dict[str, Any]:
    """Convert a CandidatePackage to a JSON-serializable dict."""
    data = asdict(c)
    if data.get("images") is not None:
        data["images"] = list(data["images"])
    return data


def message_to_dict(msg: ConversationMessage) -> Dict[str, str]:
    """Convert a stored message to the chat-completions message shape."""
    return {"role": msg.role, "content": msg.content}


def format_money(amount: Optional[float]) -> str:
    if amount is None:
        return "N/A"
    if float(amount).is_integer():
        return f"${amount:,.0f}"
    return f"${amount:,.2f}"
