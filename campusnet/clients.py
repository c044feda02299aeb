"""
HTTP client boundary used by one service to call its siblings.

Responsibilities:
- Resolve each sibling's base URL from settings, so the same code works
  when every service shares one process and when each runs on its own host.
- Attach the shared ``X-API-Key`` to internal endpoints, and forward the
  caller's bearer token where the sibling acts on behalf of the user.
- Treat every sibling as best effort: transport errors and non-2xx answers
  are logged and turned into ``None`` / empty results.  A sibling outage
  never fails the calling request.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from campusnet.config import settings

logger = logging.getLogger(__name__)

# Services that expose ``DELETE /api/<prefix>/user/{user_id}`` for account removal.
CASCADE_TARGETS: dict[str, tuple[str, str]] = {
    "network": ("NETWORK_SERVICE_URL", "/api/network"),
    "engagement": ("ENGAGEMENT_SERVICE_URL", "/api/engagement"),
    "feed": ("FEED_SERVICE_URL", "/api/feed"),
    "messages": ("MESSAGE_SERVICE_URL", "/api/messages"),
    "notifications": ("NOTIFICATION_SERVICE_URL", "/api/notifications"),
    "ai": ("AI_SERVICE_URL", "/api/ai"),
}


class ServiceClient:
    def __init__(self, http: httpx.AsyncClient | None = None) -> None:
        self._http = http or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _url(setting_name: str, path: str) -> str:
        return getattr(settings, setting_name).rstrip("/") + path

    @staticmethod
    def _internal_headers() -> dict[str, str]:
        return {"X-API-Key": settings.INTERNAL_API_KEY}

    async def _request(self, method: str, url: str, **kwargs) -> Any | None:
        try:
            r = await self._http.request(method, url, **kwargs)
            r.raise_for_status()
            if not r.content:
                return {}
            return r.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.debug("%s %s -> 404", method, url)
            else:
                logger.warning("%s %s -> %s", method, url, e.response.status_code)
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("%s %s failed: %s", method, url, e)
            return None

    # ------------------------------------------------------------------
    # User service
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: int) -> dict | None:
        return await self._request("GET", self._url("USER_SERVICE_URL", f"/api/users/profile/{user_id}"))

    async def get_profiles(self, user_ids) -> dict[int, dict]:
        """Fetch several profiles concurrently; missing ones are left out."""
        unique_ids = list(dict.fromkeys(user_ids))
        results = await asyncio.gather(*(self.get_profile(uid) for uid in unique_ids))
        return {uid: profile for uid, profile in zip(unique_ids, results) if profile}

    async def get_all_profiles(self) -> list[dict]:
        data = await self._request("GET", self._url("USER_SERVICE_URL", "/api/users/all"))
        return data if isinstance(data, list) else []

    async def delete_profile(self, token: str) -> bool:
        data = await self._request(
            "DELETE",
            self._url("USER_SERVICE_URL", "/api/users/profile"),
            headers={"Authorization": f"Bearer {token}"},
        )
        return data is not None

    # ------------------------------------------------------------------
    # Feed / engagement services
    # ------------------------------------------------------------------

    async def get_post(self, post_id: int) -> dict | None:
        return await self._request(
            "GET",
            self._url("FEED_SERVICE_URL", f"/api/feed/posts/{post_id}"),
            params={"count_view": "false", "enrich": "false"},
        )

    async def _get_list(self, setting_name: str, path: str) -> list:
        data = await self._request("GET", self._url(setting_name, path))
        return data if isinstance(data, list) else []

    async def get_likes(self, post_id: int) -> list:
        return await self._get_list("ENGAGEMENT_SERVICE_URL", f"/api/engagement/likes/{post_id}")

    async def get_comments(self, post_id: int) -> list:
        return await self._get_list("ENGAGEMENT_SERVICE_URL", f"/api/engagement/comments/{post_id}")

    async def get_shares(self, post_id: int) -> list:
        return await self._get_list("ENGAGEMENT_SERVICE_URL", f"/api/engagement/shares/{post_id}")

    async def get_engagement(self, post_id: int) -> dict:
        likes, comments, shares = await asyncio.gather(
            self.get_likes(post_id), self.get_comments(post_id), self.get_shares(post_id),
        )
        return {"likes": likes, "comments": comments, "shares": shares}

    # ------------------------------------------------------------------
    # Notification service
    # ------------------------------------------------------------------

    async def create_notification(self, payload: dict) -> bool:
        data = await self._request(
            "POST",
            self._url("NOTIFICATION_SERVICE_URL", "/api/notifications"),
            json=payload,
            headers=self._internal_headers(),
        )
        return data is not None

    async def notify(
        self,
        *,
        user_id: int,
        type: str,
        content: str,
        actor_id: int | None = None,
        related_id: int | str | None = None,
        related_data: dict | None = None,
    ) -> bool:
        """
        Create a notification for *user_id* on behalf of *actor_id*.

        The actor's profile supplies ``related_user_name`` and
        ``related_user_avatar``; a literal ``{actor}`` in *content* is
        replaced by the actor's display name.  Self-notifications are dropped.
        """
        if actor_id is not None and actor_id == user_id:
            return False
        payload: dict[str, Any] = {
            "user_id": user_id,
            "type": type,
            "related_id": str(related_id) if related_id is not None else None,
            "related_data": related_data,
        }
        name = "Someone"
        if actor_id is not None:
            actor = await self.get_profile(actor_id)
            name = display_name(actor)
            payload["related_user_id"] = actor_id
            payload["related_user_name"] = name
            payload["related_user_avatar"] = actor.get("avatar") if actor else None
        payload["content"] = content.replace("{actor}", name)
        return await self.create_notification(payload)

    # ------------------------------------------------------------------
    # Account removal
    # ------------------------------------------------------------------

    async def delete_user_data(self, service: str, user_id: int) -> bool:
        setting_name, prefix = CASCADE_TARGETS[service]
        data = await self._request(
            "DELETE",
            self._url(setting_name, f"{prefix}/user/{user_id}"),
            headers=self._internal_headers(),
        )
        return data is not None

    async def cascade_delete_user(self, user_id: int, token: str) -> dict[str, bool]:
        """
        Ask every sibling to drop the user's data, concurrently.

        Returns ``{service: succeeded}``; partial failure is reported, not raised.
        """
        names = ["profile", *CASCADE_TARGETS]
        results = await asyncio.gather(
            self.delete_profile(token),
            *(self.delete_user_data(name, user_id) for name in CASCADE_TARGETS),
        )
        outcome = dict(zip(names, results))
        failed = [name for name, ok in outcome.items() if not ok]
        if failed:
            logger.warning("Cascade delete for user %s incomplete: %s", user_id, ", ".join(failed))
        return outcome


def display_name(profile: dict | None) -> str:
    if not profile:
        return "Someone"
    name = f"{profile.get('first_name', '')} {profile.get('last_name', '')}".strip()
    return name or "Someone"


def truncate(text: str | None, limit: int = 50) -> str:
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text


# Module-level singleton; closed in the application lifespan.
service_client = ServiceClient()


def get_service_client() -> ServiceClient:
    return service_client
