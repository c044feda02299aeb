"""
Network service: connection requests and suggestions.

A connection row is directional (requester -> recipient) but at most one
row may exist per unordered pair; a request in either direction blocks a
new one.  Profile data for listings and suggestions comes from the
profile service over HTTP.
"""
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.clients import ServiceClient
from campusnet.exceptions import Conflict, InvalidRequest, PermissionDenied
from campusnet.models import Connection
from campusnet.timeutils import isoformat

DEPARTMENT_SCORE = 50
BATCH_SCORE = 30
GRADUATION_YEAR_SCORE = 30
ROLE_SCORE = 20
SKILL_SCORE = 5
INTEREST_SCORE = 3


def _connection_to_dict(connection: Connection) -> dict:
    return {
        "id": connection.id,
        "requester_id": connection.requester_id,
        "recipient_id": connection.recipient_id,
        "status": connection.status,
        "message": connection.message,
        "created_at": isoformat(connection.created_at),
        "updated_at": isoformat(connection.updated_at),
    }


def _pair_filter(a: int, b: int):
    return or_(
        (Connection.requester_id == a) & (Connection.recipient_id == b),
        (Connection.requester_id == b) & (Connection.recipient_id == a),
    )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

async def send_request(db: AsyncSession, requester_id: int, recipient_id: int, message: str | None) -> dict:
    if requester_id == recipient_id:
        raise InvalidRequest("Cannot send connection request to yourself", code="SELF_CONNECTION")
    existing = await db.execute(select(Connection).where(_pair_filter(requester_id, recipient_id)))
    if existing.scalars().first() is not None:
        raise Conflict("Connection request already exists", code="CONNECTION_EXISTS")

    connection = Connection(requester_id=requester_id, recipient_id=recipient_id, message=message)
    db.add(connection)
    await db.flush()
    return _connection_to_dict(connection)


async def _respond(db: AsyncSession, connection_id: int, user_id: int, status: str) -> dict | None:
    connection = await db.get(Connection, connection_id)
    if connection is None:
        return None
    if connection.recipient_id != user_id:
        raise PermissionDenied(f"Not authorized to {'accept' if status == 'accepted' else 'reject'} this request")
    if connection.status != "pending":
        raise InvalidRequest(f"Connection request is already {connection.status}", code="NOT_PENDING")
    connection.status = status
    await db.flush()
    return _connection_to_dict(connection)


async def accept_request(db: AsyncSession, connection_id: int, user_id: int) -> dict | None:
    return await _respond(db, connection_id, user_id, "accepted")


async def reject_request(db: AsyncSession, connection_id: int, user_id: int) -> dict | None:
    return await _respond(db, connection_id, user_id, "rejected")


async def remove_connection(db: AsyncSession, connection_id: int, user_id: int) -> bool:
    connection = await db.get(Connection, connection_id)
    if connection is None:
        return False
    if user_id not in (connection.requester_id, connection.recipient_id):
        raise PermissionDenied("Not authorized to remove this connection")
    await db.delete(connection)
    await db.flush()
    return True


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

async def _with_profiles(rows: list[Connection], user_id: int, client: ServiceClient) -> list[dict]:
    """
    Replace each connection with the other party's profile plus
    ``connection_id``.  Parties whose profile cannot be fetched are dropped.
    """
    def other(c: Connection) -> int:
        return c.recipient_id if c.requester_id == user_id else c.requester_id

    profiles = await client.get_profiles(other(c) for c in rows)
    items = []
    for c in rows:
        profile = profiles.get(other(c))
        if profile is None:
            continue
        items.append({
            **profile,
            "connection_id": c.id,
            "connection_status": c.status,
            "connected_at": isoformat(c.updated_at or c.created_at),
        })
    return items


async def get_connections(db: AsyncSession, user_id: int, client: ServiceClient) -> list[dict]:
    result = await db.execute(
        select(Connection)
        .where(
            Connection.status == "accepted",
            or_(Connection.requester_id == user_id, Connection.recipient_id == user_id),
        )
        .order_by(Connection.updated_at.desc(), Connection.id.desc())
    )
    return await _with_profiles(list(result.scalars().all()), user_id, client)


async def get_pending_requests(db: AsyncSession, user_id: int, client: ServiceClient) -> list[dict]:
    """Requests waiting for *user_id* to answer."""
    result = await db.execute(
        select(Connection)
        .where(Connection.recipient_id == user_id, Connection.status == "pending")
        .order_by(Connection.created_at.desc(), Connection.id.desc())
    )
    return await _with_profiles(list(result.scalars().all()), user_id, client)


async def get_sent_requests(db: AsyncSession, user_id: int, client: ServiceClient) -> list[dict]:
    result = await db.execute(
        select(Connection)
        .where(Connection.requester_id == user_id, Connection.status == "pending")
        .order_by(Connection.created_at.desc(), Connection.id.desc())
    )
    return await _with_profiles(list(result.scalars().all()), user_id, client)


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

def match_score(candidate: dict, me: dict) -> int:
    """
    Similarity between two profiles.

    Department counts once, compared within the first role block both
    profiles fill in (student, then professor, then alumni).
    """
    score = 0
    for block in ("student_info", "professor_info", "alumni_info"):
        theirs = (candidate.get(block) or {}).get("department")
        mine = (me.get(block) or {}).get("department")
        if theirs and mine:
            if theirs == mine:
                score += DEPARTMENT_SCORE
            break

    their_batch = (candidate.get("student_info") or {}).get("batch")
    if their_batch and their_batch == (me.get("student_info") or {}).get("batch"):
        score += BATCH_SCORE

    their_year = (candidate.get("alumni_info") or {}).get("graduation_year")
    if their_year and their_year == (me.get("alumni_info") or {}).get("graduation_year"):
        score += GRADUATION_YEAR_SCORE

    if candidate.get("role") and candidate.get("role") == me.get("role"):
        score += ROLE_SCORE

    my_skills = set(me.get("skills") or [])
    score += SKILL_SCORE * sum(1 for s in candidate.get("skills") or [] if s in my_skills)
    my_interests = set(me.get("interests") or [])
    score += INTEREST_SCORE * sum(1 for i in candidate.get("interests") or [] if i in my_interests)
    return score


async def get_suggestions(db: AsyncSession, user_id: int, client: ServiceClient) -> list[dict]:
    """
    Every profile not already related to *user_id* (any status, either
    direction), scored by ``match_score`` and sorted best first.
    """
    result = await db.execute(
        select(Connection).where(
            or_(Connection.requester_id == user_id, Connection.recipient_id == user_id)
        )
    )
    excluded = {user_id}
    for c in result.scalars().all():
        excluded.add(c.recipient_id if c.requester_id == user_id else c.requester_id)

    me = await client.get_profile(user_id) or {}
    candidates = [p for p in await client.get_all_profiles() if p.get("user_id") not in excluded]
    scored = [{**p, "match_score": match_score(p, me)} for p in candidates]
    scored.sort(key=lambda p: p["match_score"], reverse=True)
    return scored


async def delete_user_connections(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        delete(Connection).where(
            or_(Connection.requester_id == user_id, Connection.recipient_id == user_id)
        )
    )
    return result.rowcount or 0
