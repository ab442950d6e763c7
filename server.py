"""HTTP API for the sponsorship advisor."""

from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from sponsor_advisor import AdvisorSessions, SponsorshipAdvisor
from sponsor_advisor.config import ADVISOR_API_TOKENS, parse_api_tokens
from sponsor_advisor.errors import AdvisorError, ContractViolation, UnauthorizedError
from sponsor_advisor.logging_config import configure_logging
from sponsor_advisor.models import AdvisorFilters, Conversation, ConversationMessage
from sponsor_advisor.utils import serialize_candidate

logger = configure_logging()

app = FastAPI(title="Sponsorship Advisor API")

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify the exact origin
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class FiltersPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sport: Optional[str] = None
    budget_min: Optional[float] = Field(default=None, alias="budgetMin")
    budget_max: Optional[float] = Field(default=None, alias="budgetMax")
    radius_km: Optional[float] = Field(default=None, alias="radiusKm")


class TurnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    filters: Optional[FiltersPayload] = None


class FeedbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")
    sponsorship_offer_id: str = Field(alias="sponsorshipOfferId")
    package_id: str = Field(alias="packageId")
    action: str


# Shared collaborators; each user gets their own conversation store.
_sessions: Optional[AdvisorSessions] = None


def get_sessions() -> AdvisorSessions:
    global _sessions
    if _sessions is None:
        _sessions = AdvisorSessions.from_config()
    return _sessions


def get_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError()
    tokens = parse_api_tokens(ADVISOR_API_TOKENS)
    if not tokens:
        # Development mode: the bearer token is the user id
        return token
    user_id = tokens.get(token)
    if user_id is None:
        raise UnauthorizedError()
    return user_id


def get_advisor(
    user_id: str = Depends(get_user_id),
    sessions: AdvisorSessions = Depends(get_sessions),
) -> SponsorshipAdvisor:
    return sessions.for_user(user_id)


@app.exception_handler(AdvisorError)
async def advisor_error_handler(request: Request, exc: AdvisorError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.category)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.user_message})


@app.exception_handler(ContractViolation)
async def contract_violation_handler(request: Request, exc: ContractViolation):
    logger.error("Grounding contract violated on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Failed to send message. Please try again."})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    detail = f"Invalid request: {', '.join(fields)}." if fields else "Invalid request."
    return JSONResponse(status_code=400, content={"error": detail})


def _message_payload(msg: ConversationMessage) -> dict:
    return {
        "id": msg.id,
        "role": msg.role,
        "content": msg.content,
        "timestamp": msg.timestamp.isoformat(),
        "recommendations": (
            [serialize_candidate(c) for c in msg.recommendations] if msg.recommendations is not None else None
        ),
    }


def _conversation_summary(conv: Conversation, active_id: Optional[str]) -> dict:
    return {
        "id": conv.id,
        "title": conv.title,
        "lastActivity": conv.last_activity.isoformat(),
        "messageCount": len(conv.messages),
        "active": conv.id == active_id,
    }


@app.post("/advisor/turn")
async def advisor_turn(request: TurnRequest, advisor: SponsorshipAdvisor = Depends(get_advisor)):
    filters = None
    if request.filters is not None:
        filters = AdvisorFilters(**request.filters.model_dump())
    result = await advisor.handle_turn(request.conversation_id, request.message, filters)
    return {
        "conversationId": result.conversation_id,
        "message": result.assistant_text,
        "recommendations": (
            [serialize_candidate(c) for c in result.recommendations] if result.recommendations else None
        ),
    }


@app.get("/advisor/conversations")
async def list_conversations(advisor: SponsorshipAdvisor = Depends(get_advisor)):
    active_id = advisor.store.active_id
    conversations: List[dict] = [_conversation_summary(c, active_id) for c in advisor.list_conversations()]
    return {"conversations": conversations}


@app.get("/advisor/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, advisor: SponsorshipAdvisor = Depends(get_advisor)):
    conv = await advisor.load_conversation(conversation_id)
    return {
        "id": conv.id,
        "title": conv.title,
        "preferences": conv.preferences.to_dict() if conv.preferences else None,
        "messages": [_message_payload(m) for m in conv.messages],
    }


@app.post("/advisor/conversations/{conversation_id}/activate")
async def activate_conversation(conversation_id: str, advisor: SponsorshipAdvisor = Depends(get_advisor)):
    conv = await advisor.activate_conversation(conversation_id)
    return {"activeConversationId": conv.id}


@app.delete("/advisor/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, advisor: SponsorshipAdvisor = Depends(get_advisor)):
    await advisor.delete_conversation(conversation_id)
    return {"deleted": conversation_id}


@app.post("/advisor/feedback")
async def record_feedback(request: FeedbackRequest, advisor: SponsorshipAdvisor = Depends(get_advisor)):
    await advisor.record_feedback(
        request.conversation_id, request.sponsorship_offer_id, request.package_id, request.action
    )
    return {"status": "ok"}


@app.get("/")
async def root():
    return {"status": "Sponsorship Advisor API is running", "docs": "/docs"}


@app.get("/health")
async def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
