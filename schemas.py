"""
Database Schemas for AidLink

Each Pydantic model represents a document in a MongoDB collection.
Message documents live in the "<room collection>.messages" collections.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Category = Literal[
    "Health",
    "Safety",
    "Environment",
    "Groceries",
    "Tutoring",
    "Building",
    "Carrying Something",
    "Academic Help",
    "Mental Health",
    "Physical Health",
    "Financial",
    "Housing",
    "Food",
    "Transportation",
    "Other",
]
Urgency = Literal["low", "medium", "normal", "high", "critical"]
Status = Literal["pending", "resolved", "cancelled"]

STATUSES = ("pending", "resolved", "cancelled")


class Identity(BaseModel):
    """The signed-in user, passed explicitly into every repository call."""

    uid: str
    display_name: Optional[str] = None
    email: EmailStr
    photo_url: Optional[str] = None


# Collection: "users"
class UserProfile(BaseModel):
    display_name: Optional[str] = Field(None, description="Display name")
    email: EmailStr = Field(..., description="Email address")
    photo_url: Optional[str] = Field(None, description="Avatar image URL")


# Collection: "authcodes"
class AuthCode(BaseModel):
    email: EmailStr
    code: str
    expires_at: datetime
    used: bool = False


# Collection: "sessions"
class Session(BaseModel):
    user_id: str
    email: EmailStr
    token: str
    expires_at: datetime


# Collection: "requests"
class Request(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: Category = "Health"
    urgency: Urgency = "normal"
    contact: Optional[str] = ""
    requester_id: str
    requester_name: Optional[str] = None
    requester_email: EmailStr
    volunteer_email: Optional[EmailStr] = None
    status: Status = "pending"
    requested_at: Optional[datetime] = None


# Collection: "chats"
class ChatRoom(BaseModel):
    request_id: str
    request_title: str
    participants: List[str] = Field(..., min_length=2, max_length=2, description="Requester and volunteer emails")


# Collection: "discussionBoards"
class DiscussionBoard(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = ""
    participants: List[str] = Field(default_factory=list, description="Member emails, append-only")
    created_by: str


# Collections: "chats.messages", "discussionBoards.messages"
class Message(BaseModel):
    room_id: str
    text: str = Field(..., min_length=1)
    sender_email: str
    timestamp: datetime
