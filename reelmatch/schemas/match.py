from enum import Enum
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional


class MatchState(str, Enum):
    NONE = "none"
    PENDING_SENT = "pending_sent"
    PENDING_RECEIVED = "pending_received"
    MUTUAL_INTEREST = "mutual_interest"  # requests both ways, different items
    MATCHED = "matched"


class SharedItem(BaseModel):
    item_id: int
    title: str
    poster_url: Optional[str] = None
    release_year: Optional[str] = None


class Candidate(BaseModel):
    other_user_id: UUID
    overlap_count: int
    shared_item_ids: list[int]
    most_recent_shared_activity: datetime


class CandidateResponse(Candidate):
    display_name: str
    match_status: MatchState = MatchState.NONE
    request_sent_at: Optional[datetime] = None


class MatchRequestCreate(BaseModel):
    target_user_id: UUID
    item_id: int


class MatchResultResponse(BaseModel):
    matched: bool
    room_id: Optional[UUID] = None


class MatchStatusResponse(BaseModel):
    state: MatchState
    can_match: bool
    can_decline: bool
    request_sent_at: Optional[datetime] = None
    room_id: Optional[UUID] = None
    shared_items: list[SharedItem] = []
    incoming_item_ids: list[int] = []
    outgoing_item_ids: list[int] = []


class ActiveMatchResponse(BaseModel):
    other_user_id: UUID
    display_name: str
    room_id: UUID
    matched_at: datetime
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0  # messages authored by the other party, not "since last read"
    shared_items: list[SharedItem] = []


class NotificationUser(BaseModel):
    id: UUID
    display_name: str


class MatchNotification(BaseModel):
    type: str  # match_request / mutual_match
    user: NotificationUser
    item_id: int
    item_title: str
    room_id: Optional[UUID] = None
    timestamp: datetime
