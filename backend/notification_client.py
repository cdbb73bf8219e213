import logging
from typing import List, Optional, Type

import httpx
from pydantic import BaseModel, ValidationError

from care_models import Medicine, Notification, Schedule

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ApiError):
    pass


class WellnessApiClient:
    """Async client for the parts of the API the reminder agent needs."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/api",
            headers=headers,
            timeout=timeout,
            transport=transport
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def _request(self, method: str, path: str) -> httpx.Response:
        try:
            response = await self._client.request(method, path)
        except httpx.HTTPError as exc:
            raise ApiError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path} returned 404", status_code=404)
        if response.status_code >= 400:
            detail = (response.text or "error")[:240]
            raise ApiError(
                f"{method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code
            )
        return response

    async def _get_list(self, path: str, model: Type[BaseModel]) -> list:
        response = await self._request("GET", path)
        try:
            return [model.model_validate(item) for item in response.json()]
        except (ValueError, ValidationError, TypeError) as exc:
            raise ApiError(f"GET {path} returned invalid body: {exc}", status_code=response.status_code) from exc

    async def list_notifications(self, user_id: int) -> List[Notification]:
        return await self._get_list(f"/notifications/{user_id}", Notification)

    async def mark_notification_read(self, notification_id: int) -> None:
        await self._request("PATCH", f"/notifications/{notification_id}/read")

    async def mark_all_notifications_read(self, user_id: int) -> bool:
        """False when the server had nothing to update for this user."""
        try:
            await self._request("PATCH", f"/notifications/{user_id}/read-all")
        except NotFoundError:
            logger.info(f"No durable notifications to mark read for user {user_id}")
            return False
        return True

    async def list_schedules(self, user_id: int) -> List[Schedule]:
        return await self._get_list(f"/schedules/{user_id}", Schedule)

    async def list_medicines(self, user_id: int) -> List[Medicine]:
        return await self._get_list(f"/medicines/{user_id}", Medicine)
