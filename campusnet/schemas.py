from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

Role = Literal["student", "professor", "alumni", "admin"]
PostType = Literal["text", "article", "achievement", "event", "poll"]
Visibility = Literal["public", "connections", "private"]
ReactionType = Literal["like", "love", "celebrate", "support", "insightful"]
NotificationType = Literal[
    "LIKE", "COMMENT", "SHARE", "CONNECTION_REQUEST", "CONNECTION_ACCEPTED", "MESSAGE", "MENTION",
]
NewsCategory = Literal["news", "events", "academics", "placements", "achievements", "general"]
ChatContext = Literal["general", "profile", "content", "career"]


# --- Auth ---

class RegisterRequest(BaseModel):
    full_name: str = Field(min_length=2, max_length=100)
    username: str = Field(min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$")
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    role: Literal["student", "professor", "alumni"] = "student"


class LoginRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(min_length=1)


class EmailRequest(BaseModel):
    email: str = Field(max_length=255)


# OTP and password rules are checked in the service so failures map to 400.
class VerifyOtpRequest(BaseModel):
    email: str = Field(max_length=255)
    otp: str


class ResetPasswordRequest(BaseModel):
    email: str = Field(max_length=255)
    otp: str
    new_password: str
    confirm_password: str


class UserResponse(BaseModel):
    id: int
    full_name: str
    username: str
    email: str
    role: str
    is_verified: bool
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuthResponse(UserResponse):
    token: str
    message: str | None = None


# --- Profiles ---

class Location(BaseModel):
    city: str | None = None
    state: str | None = None
    country: str | None = None


class Contact(BaseModel):
    phone: str | None = None
    alternate_email: str | None = None


class StudentInfo(BaseModel):
    roll_number: str | None = None
    batch: str | None = None
    department: str | None = None
    semester: int | None = None
    cgpa: float | None = None


class ProfessorInfo(BaseModel):
    employee_id: str | None = None
    department: str | None = None
    designation: str | None = None
    specialization: list[str] = []


class AlumniInfo(BaseModel):
    graduation_year: int | None = None
    department: str | None = None
    current_company: str | None = None
    current_position: str | None = None


class SocialLinks(BaseModel):
    linkedin: str | None = None
    github: str | None = None
    twitter: str | None = None
    portfolio: str | None = None


class Experience(BaseModel):
    title: str | None = None
    company: str | None = None
    employment_type: str | None = None
    location: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    is_current: bool = False
    description: str | None = None


class Activity(BaseModel):
    type: Literal["post", "article", "achievement", "event"] | None = None
    title: str | None = None
    description: str | None = None
    image_url: str | None = None
    link: str | None = None
    date: str | None = None
    likes: int = 0
    comments: int = 0
    shares: int = 0


class Featured(BaseModel):
    type: Literal["post", "article", "project", "certification"] | None = None
    title: str | None = None
    description: str | None = None
    image_url: str | None = None
    link: str | None = None
    date: str | None = None


class ProfileStats(BaseModel):
    connections: int = 0
    posts: int = 0
    followers: int = 0


class ProfilePreferences(BaseModel):
    profile_visibility: Visibility = "public"
    email_notifications: bool = True
    show_activity: bool = True


class ProfileFields(BaseModel):
    avatar: str | None = Field(None, max_length=500)
    banner: str | None = Field(None, max_length=500)
    bio: str | None = Field(None, max_length=500)
    title: str | None = Field(None, max_length=200)
    location: Location | None = None
    contact: Contact | None = None
    student_info: StudentInfo | None = None
    professor_info: ProfessorInfo | None = None
    alumni_info: AlumniInfo | None = None
    skills: list[str] | None = None
    interests: list[str] | None = None
    languages: list[str] | None = None
    social_links: SocialLinks | None = None
    experience: list[Experience] | None = None
    activities: list[Activity] | None = None
    featured: list[Featured] | None = None
    stats: ProfileStats | None = None
    preferences: ProfilePreferences | None = None


class ProfileCreate(ProfileFields):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    # Defaults to the email and role carried by the access token.
    email: str | None = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    role: Role | None = None


class ProfileUpdate(ProfileFields):
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    role: Role | None = None


# --- Feed ---

class MediaItem(BaseModel):
    type: Literal["image", "video", "document"] = "image"
    url: str = Field(max_length=1000)
    caption: str | None = Field(None, max_length=500)


class PostCreate(BaseModel):
    content: str = Field("", max_length=5000)
    type: PostType = "text"
    media: list[MediaItem] = []
    # Single-attachment shortcut used by simple clients.
    media_url: str | None = Field(None, max_length=1000)
    media_type: Literal["image", "video", "document"] = "image"
    visibility: Visibility = "public"
    tags: list[str] = []
    mentions: list[int] = []


class PostUpdate(BaseModel):
    content: str | None = Field(None, max_length=5000)
    type: PostType | None = None
    media: list[MediaItem] | None = None
    visibility: Visibility | None = None
    tags: list[str] | None = None
    mentions: list[int] | None = None
    is_pinned: bool | None = None
    is_archived: bool | None = None


# --- Engagement ---

class LikeRequest(BaseModel):
    reaction_type: ReactionType = "like"
    post_owner_id: int | None = None


class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)
    parent_comment_id: int | None = None
    post_owner_id: int | None = None


class CommentUpdate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)


class ShareRequest(BaseModel):
    message: str | None = Field(None, max_length=500)
    post_owner_id: int | None = None


# --- Network ---

class ConnectRequest(BaseModel):
    message: str | None = Field(None, max_length=300)


# --- Messages ---

class SendMessageRequest(BaseModel):
    recipient_id: int
    content: str = Field(min_length=1, max_length=5000)


# --- Notifications ---

class NotificationCreate(BaseModel):
    user_id: int
    type: NotificationType
    content: str = Field(min_length=1, max_length=500)
    related_user_id: int | None = None
    related_user_name: str | None = Field(None, max_length=200)
    related_user_avatar: str | None = Field(None, max_length=500)
    related_id: str | None = Field(None, max_length=100)
    related_data: dict | None = None


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    type: str
    content: str
    is_read: bool
    related_user_id: int | None = None
    related_user_name: str | None = None
    related_user_avatar: str | None = None
    related_id: str | None = None
    related_data: dict | None = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class NotificationList(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    has_more: bool


# --- News ---

class NewsResponse(BaseModel):
    id: int
    title: str
    description: str
    content: str | None = None
    image_url: str
    source_url: str
    published_date: datetime
    category: NewsCategory
    source: str
    is_active: bool
    scraped_at: datetime
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ScrapeResult(BaseModel):
    saved: int
    updated: int
    total: int


# --- AI advisor ---

class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=10000)
    context: ChatContext = "general"
    conversation_history: list[HistoryTurn] | None = None
    profile_data: dict | None = None


class AnalyzeProfileRequest(BaseModel):
    profile_data: dict


class ContentIdeasRequest(BaseModel):
    industry: str | None = None
    interests: list[str] | None = None
    recent_topics: list[str] | None = None


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list  # Will be typed in router
    total: int
    page: int
    page_size: int
    pages: int
