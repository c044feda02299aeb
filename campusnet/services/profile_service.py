"""
Profile service: the public face of each account.

Other services never read ``user_profiles`` directly; they fetch profiles
over HTTP and keep whatever denormalised copy they need (notification
actor names, post author details).  Those copies are eventually
consistent with this table.
"""
import math
from urllib.parse import quote_plus

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.dependencies import CurrentUser
from campusnet.exceptions import Conflict
from campusnet.models import UserProfile
from campusnet.schemas import PaginatedResponse, ProfileCreate, ProfileUpdate
from campusnet.timeutils import isoformat

SEARCH_LIMIT = 20

_JSON_FIELDS = (
    "location", "contact", "student_info", "professor_info", "alumni_info",
    "skills", "interests", "languages", "social_links", "experience",
    "activities", "featured", "stats", "preferences",
)

# Nullable blocks a client may clear by sending an explicit null.
_CLEARABLE_FIELDS = frozenset({"location", "contact", "student_info", "professor_info", "alumni_info"})

_DEFAULT_PREFERENCES = {"profile_visibility": "public", "email_notifications": True, "show_activity": True}
_DEFAULT_STATS = {"connections": 0, "posts": 0, "followers": 0}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def default_avatar(first_name: str, last_name: str) -> str:
    name = quote_plus(f"{first_name} {last_name}".strip() or "User")
    return f"https://ui-avatars.com/api/?name={name}&background=0066cc&color=fff"


def derive_department(profile: UserProfile) -> str | None:
    """Student info wins over professor info, which wins over alumni info."""
    for info in (profile.student_info, profile.professor_info, profile.alumni_info):
        if info and info.get("department"):
            return info["department"]
    return None


def _profile_to_dict(profile: UserProfile) -> dict:
    data = {
        "id": profile.id,
        "user_id": profile.user_id,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "email": profile.email,
        "role": profile.role,
        "avatar": profile.avatar,
        "banner": profile.banner,
        "bio": profile.bio,
        "title": profile.title,
        "department": profile.department,
        "created_at": isoformat(profile.created_at),
        "updated_at": isoformat(profile.updated_at),
    }
    for field in _JSON_FIELDS:
        data[field] = getattr(profile, field)
    return data


def _apply(profile: UserProfile, values: dict) -> None:
    for field, value in values.items():
        setattr(profile, field, value)
    profile.department = derive_department(profile)


async def _get(db: AsyncSession, user_id: int) -> UserProfile | None:
    result = await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_profile(db: AsyncSession, user: CurrentUser, data: ProfileCreate) -> dict:
    """
    Create the caller's profile.  Email and role default to the claims in
    the access token.  Email uniqueness is enforced by the database; the
    router maps the integrity error to 409.
    """
    if await _get(db, user.id) is not None:
        raise Conflict("Profile already exists for this user", code="PROFILE_EXISTS")

    # Nested blocks are dumped in full so stored JSON always has the schema's keys.
    values = {field: value for field, value in data.model_dump().items() if value is not None}
    values["email"] = (values.get("email") or user.email).lower()
    values["role"] = values.get("role") or user.role
    values.setdefault("avatar", default_avatar(data.first_name, data.last_name))
    values["preferences"] = {**_DEFAULT_PREFERENCES, **values.get("preferences", {})}
    values["stats"] = {**_DEFAULT_STATS, **values.get("stats", {})}

    profile = UserProfile(user_id=user.id)
    _apply(profile, values)
    db.add(profile)
    await db.flush()
    return _profile_to_dict(profile)


async def get_profile(db: AsyncSession, user_id: int) -> dict | None:
    profile = await _get(db, user_id)
    return _profile_to_dict(profile) if profile else None


async def update_profile(db: AsyncSession, user_id: int, data: ProfileUpdate) -> dict | None:
    """
    Partially update a profile.  Nested blocks (``student_info``,
    ``experience`` ...) are replaced as a whole when present.
    """
    profile = await _get(db, user_id)
    if profile is None:
        return None
    values = {
        field: value
        for field, value in data.model_dump(include=data.model_fields_set).items()
        if value is not None or field in _CLEARABLE_FIELDS
    }
    _apply(profile, values)
    await db.flush()
    return _profile_to_dict(profile)


async def delete_profile(db: AsyncSession, user_id: int) -> bool:
    profile = await _get(db, user_id)
    if profile is None:
        return False
    await db.delete(profile)
    await db.flush()
    return True


async def search_profiles(
    db: AsyncSession,
    q: str | None = None,
    role: str | None = None,
    department: str | None = None,
) -> list[dict]:
    """
    Case-insensitive partial match on names, title and bio, optionally
    narrowed by role and department.  At most ``SEARCH_LIMIT`` rows,
    ordered by first name.
    """
    query = select(UserProfile)
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        query = query.where(
            or_(
                UserProfile.first_name.ilike(pattern),
                UserProfile.last_name.ilike(pattern),
                UserProfile.title.ilike(pattern),
                UserProfile.bio.ilike(pattern),
            )
        )
    if role:
        query = query.where(UserProfile.role == role)
    if department:
        query = query.where(UserProfile.department == department)

    query = query.order_by(UserProfile.first_name.asc(), UserProfile.id.asc()).limit(SEARCH_LIMIT)
    result = await db.execute(query)
    return [_profile_to_dict(p) for p in result.scalars().all()]


async def list_profiles(db: AsyncSession, page: int = 1, page_size: int = 20) -> PaginatedResponse:
    total: int = (await db.execute(select(func.count()).select_from(UserProfile))).scalar_one()
    result = await db.execute(
        select(UserProfile)
        .order_by(UserProfile.created_at.desc(), UserProfile.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return PaginatedResponse(
        items=[_profile_to_dict(p) for p in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


async def all_profiles(db: AsyncSession) -> list[dict]:
    result = await db.execute(select(UserProfile).order_by(UserProfile.id.asc()))
    return [_profile_to_dict(p) for p in result.scalars().all()]
