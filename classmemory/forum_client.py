"""
Async client for the external forum store (threads, posts, search, likes).

Every call is a single request: no retries here. Transport and HTTP failures
surface as ``ForumError`` with the original exception chained.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ForumError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ForumNotFound(ForumError):
    pass


class ForumAuthError(ForumError):
    pass


def _items(data: Any, key: str) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        rows = data
    elif isinstance(data, dict):
        rows = data.get(key) or data.get("items") or data.get("data") or []
    else:
        rows = []
    return [r for r in rows if isinstance(r, dict)]


class ForumClient:
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "X-API-Key": self.api_key}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        token: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("forum %s %s", method, path)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.request(method, url, params=params, json=json, headers=self._headers(token))
        except httpx.TimeoutException as e:
            raise ForumError(f"Forum request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            raise ForumError(f"Forum request failed: {method} {path}: {e}") from e

        if r.status_code == 404:
            raise ForumNotFound(f"Forum resource not found: {path}", status=404)
        if r.status_code in (401, 403):
            raise ForumAuthError(f"Forum rejected credentials: {r.status_code}", status=r.status_code)
        if r.status_code >= 400:
            detail = ""
            try:
                body = r.json()
                if isinstance(body, dict):
                    detail = str(body.get("message") or body.get("error") or "")
            except ValueError:
                pass
            raise ForumError(f"Forum API error {r.status_code} {r.reason_phrase} - {detail or 'Unknown error'}",
                             status=r.status_code)

        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise ForumError(f"Forum returned non-JSON for {method} {path}") from e

    # ---------- identity ----------

    async def me(self, token: str) -> Dict[str, Any]:
        data = await self._request("GET", "/auth/me", token=token)
        if not isinstance(data, dict) or not data.get("id"):
            raise ForumAuthError("Forum did not return a user for this token")
        return data

    # ---------- threads ----------

    async def create_thread(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/thread", json=payload)

    async def get_thread(self, thread_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/thread/{thread_id}")

    async def update_thread(self, thread_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/thread/{thread_id}", json=data)

    async def delete_thread(self, thread_id: str) -> None:
        await self._request("DELETE", f"/thread/{thread_id}")

    async def list_threads(self, *, tag: Optional[str] = None, type: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, str] = {}
        if tag:
            params["tag"] = tag
        if type:
            params["extendedData.type"] = type
        # the store may ignore bag filters; callers narrow through the mapper
        return _items(await self._request("GET", "/threads", params=params or None), "threads")

    # ---------- posts ----------

    async def create_post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/post", json=payload)

    async def get_post(self, post_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/post/{post_id}")

    async def update_post(self, post_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/post/{post_id}", json=data)

    async def delete_post(self, post_id: str) -> None:
        await self._request("DELETE", f"/post/{post_id}")

    async def list_posts(
        self,
        *,
        thread_id: Optional[str] = None,
        tag: Optional[str] = None,
        type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, str] = {}
        if thread_id:
            params["threadId"] = thread_id
        if tag:
            params["tag"] = tag
        if type:
            params["extendedData.type"] = type
        posts = _items(await self._request("GET", "/posts", params=params or None), "posts")
        if thread_id:
            posts = [p for p in posts if p.get("threadId") == thread_id]
        return posts

    # ---------- search ----------

    async def search(
        self,
        query: str,
        *,
        tags: Optional[List[str]] = None,
        thread_id: Optional[str] = None,
    ) -> Dict[str, List[Dict[str, Any]]]:
        params: List[tuple[str, str]] = [("q", query)]
        for tag in tags or []:
            params.append(("tag", tag))
        if thread_id:
            params.append(("threadId", thread_id))
        data = await self._request("GET", "/search", params=params)
        return {"threads": _items(data, "threads"), "posts": _items(data, "posts")}

    # ---------- participants ----------

    async def add_thread_participant(self, thread_id: str, user_id: str) -> None:
        await self._request("POST", f"/thread/{thread_id}/participants", json={"userId": user_id})

    # ---------- likes ("helpful") ----------

    async def like_post(self, post_id: str, user_id: str) -> None:
        await self._request("POST", f"/post/{post_id}/likes", json={"userId": user_id, "extendedData": {}})

    async def unlike_post(self, post_id: str, user_id: str) -> None:
        await self._request("DELETE", f"/post/{post_id}/likes", params={"userId": user_id})

    async def get_post_likes(self, post_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/post/{post_id}/likes")
        likes = _items(data, "likes")
        count = data.get("count") if isinstance(data, dict) else None
        return {"likes": likes, "count": int(count) if isinstance(count, int) else len(likes)}


__all__ = ["ForumClient", "ForumError", "ForumNotFound", "ForumAuthError"]
