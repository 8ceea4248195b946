"""Data providers — where stale cache entries are re-fetched from.

Learn: Two implementations of one interface, chosen by configuration:
- ApiDataProvider talks to the CRM REST API over httpx
- DemoDataProvider serves canned data, for demos and offline work

The choice is made once, in create_provider(). A network or auth failure
against the real API is an error, never a silent switch to demo data.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from alpinecrm.client import cache
from alpinecrm.client.cache import CacheKey
from alpinecrm.client.notifications import Notification
from alpinecrm.config import Settings

logger = structlog.get_logger()

# Query kind → REST path. Dashboard keys carry a "view" param instead.
RESOURCE_PATHS = {
    cache.CONTACTS: "/contacts",
    cache.DEALS: "/deals",
    cache.TASKS: "/tasks",
    cache.TICKETS: "/tickets",
    cache.ACTIVITIES: "/activities",
    cache.APPOINTMENTS: "/appointments",
    cache.INVOICES: "/invoices",
    cache.EMAILS: "/emails",
}
DASHBOARD_VIEWS = ("stats", "pipeline", "upcoming-tasks")


class ProviderError(Exception):
    """Raised when a query cannot be answered."""


class AuthenticationError(ProviderError):
    """Raised when the API rejects the session's token (HTTP 401)."""


def resolve_path(key: CacheKey) -> tuple[str, dict[str, Any]]:
    """Map a cache key to (path, query params)."""
    params = key.param_dict()
    if key.kind == cache.DASHBOARD:
        view = params.pop("view", "stats")
        if view not in DASHBOARD_VIEWS:
            raise ProviderError(f"Unknown dashboard view: {view}")
        return f"/dashboard/{view}", params
    path = RESOURCE_PATHS.get(key.kind)
    if path is None:
        raise ProviderError(f"Unknown query kind: {key.kind}")
    return path, params


class DataProvider(ABC):
    """Read contract shared by the real API and the demo data."""

    @abstractmethod
    async def fetch(self, key: CacheKey) -> Any:
        """Run the query a cache key stands for."""

    @abstractmethod
    async def list_notifications(self, limit: int = 20) -> list[Notification]:
        """Return the most recent notifications, newest first."""

    @abstractmethod
    async def unread_count(self) -> int:
        ...

    @abstractmethod
    async def mark_read(self, notification_id: str) -> None:
        ...

    @abstractmethod
    async def mark_all_read(self) -> None:
        ...

    async def aclose(self) -> None:
        pass


class ApiDataProvider(DataProvider):
    """DataProvider backed by the CRM REST API."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            r = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} {path} failed: {e}") from e

        if r.status_code == 401:
            raise AuthenticationError(f"{method} {path}: token rejected")
        if r.is_error:
            raise ProviderError(f"{method} {path} returned {r.status_code}")

        try:
            body = r.json() if r.content else {}
        except ValueError as e:
            raise ProviderError(f"{method} {path} returned a non-JSON body") from e
        # Unwrap the {"success": true, "data": ...} envelope
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def fetch(self, key: CacheKey) -> Any:
        path, params = resolve_path(key)
        return await self._request("GET", path, params=params)

    async def list_notifications(self, limit: int = 20) -> list[Notification]:
        data = await self._request("GET", "/notifications", params={"limit": limit})
        items = data.get("notifications", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ProviderError("GET /notifications returned an unexpected shape")
        notifications = []
        for n in items:
            try:
                notifications.append(Notification.model_validate(n))
            except ValidationError as e:
                logger.warning("provider.notification_invalid", errors=e.error_count())
        return notifications

    async def unread_count(self) -> int:
        data = await self._request("GET", "/notifications/unread-count")
        if isinstance(data, dict):
            return int(data.get("count", 0))
        return int(data or 0)

    async def mark_read(self, notification_id: str) -> None:
        await self._request("PATCH", f"/notifications/{notification_id}/read")

    async def mark_all_read(self) -> None:
        await self._request("PATCH", "/notifications/read-all")

    async def aclose(self) -> None:
        await self._client.aclose()


def _ago(**delta) -> str:
    return (datetime.now(timezone.utc) - timedelta(**delta)).isoformat()


def _demo_dataset() -> dict[str, Any]:
    contacts = [
        {"id": "c-001", "firstName": "Sarah", "lastName": "Chen",
         "company": "TechVault", "status": "customer"},
        {"id": "c-002", "firstName": "Marcus", "lastName": "Rivera",
         "company": "Pinnacle Group", "status": "lead"},
        {"id": "c-003", "firstName": "Elena", "lastName": "Vasquez",
         "company": "Orbit Solutions", "status": "prospect"},
    ]
    deals = [
        {"id": "d-001", "name": "Enterprise License - Quantum Labs",
         "value": 125000, "stage": "closed_won"},
        {"id": "d-002", "name": "SaaS Migration - CloudNine Inc",
         "value": 85000, "stage": "proposal"},
    ]
    tasks = [
        {"id": "t-001", "title": "Follow-up call with Nexus Digital",
         "status": "completed", "priority": "high"},
        {"id": "t-002", "title": "Send proposal to Pinnacle Group",
         "status": "pending", "priority": "medium"},
    ]
    tickets = [
        {"id": "tk-089", "ticketNumber": "TK-089",
         "subject": "PDF export times out", "status": "open",
         "priority": "high"},
    ]
    activities = [
        {"id": "act-001", "type": "created", "title": "New contact added",
         "createdAt": _ago(hours=1)},
        {"id": "act-002", "type": "status_changed", "title": "Deal won",
         "createdAt": _ago(hours=3)},
    ]
    return {
        cache.CONTACTS: {"contacts": contacts, "total": len(contacts)},
        cache.DEALS: {"deals": deals, "total": len(deals)},
        cache.TASKS: {"tasks": tasks, "total": len(tasks)},
        cache.TICKETS: {"tickets": tickets, "total": len(tickets)},
        cache.ACTIVITIES: {"activities": activities, "total": len(activities)},
        cache.APPOINTMENTS: {"appointments": [], "total": 0},
        cache.INVOICES: {"invoices": [], "total": 0},
        cache.EMAILS: {"emails": [], "total": 0},
        "dashboard/stats": {
            "contacts": {"total": len(contacts)},
            "deals": {"total": len(deals), "pipelineValue": 85000, "wonValue": 125000},
            "tasks": {"total": len(tasks), "pending": 1},
            "tickets": {"total": len(tickets), "open": 1},
        },
        "dashboard/pipeline": [
            {"stage": "proposal", "count": 1, "value": 85000},
            {"stage": "closed_won", "count": 1, "value": 125000},
        ],
        "dashboard/upcoming-tasks": [t for t in tasks if t["status"] != "completed"],
    }


def _demo_notifications() -> list[Notification]:
    raw = [
        {"id": "n-001", "type": "deal_won", "title": "Deal Won!",
         "message": 'Deal "Enterprise License - Quantum Labs" worth $125,000 has been won!',
         "createdAt": _ago(minutes=20)},
        {"id": "n-002", "type": "task_assigned", "title": "New Task Assigned",
         "message": "Alex Morgan assigned you a task: Send proposal to Pinnacle Group",
         "createdAt": _ago(hours=2)},
        {"id": "n-003", "type": "ticket_assigned", "title": "Ticket Assigned",
         "message": "Ticket TK-089: PDF export times out has been assigned to you",
         "read": True, "createdAt": _ago(days=1)},
    ]
    return [Notification.model_validate(n) for n in raw]


class DemoDataProvider(DataProvider):
    """DataProvider serving canned data; satisfies the same read contract."""

    def __init__(self):
        self._data = _demo_dataset()
        self._notifications = _demo_notifications()

    async def fetch(self, key: CacheKey) -> Any:
        path, _ = resolve_path(key)
        return self._data[path.lstrip("/")]

    async def list_notifications(self, limit: int = 20) -> list[Notification]:
        return [n.model_copy() for n in self._notifications[:limit]]

    async def unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.read)

    async def mark_read(self, notification_id: str) -> None:
        for n in self._notifications:
            if n.id == notification_id:
                n.read = True

    async def mark_all_read(self) -> None:
        for n in self._notifications:
            n.read = True


def create_provider(settings: Settings, token: Optional[str]) -> DataProvider:
    """Pick the provider named by settings.data_provider."""
    if settings.data_provider == "demo":
        logger.info("provider.demo_mode")
        return DemoDataProvider()
    return ApiDataProvider(settings.api_url, token)
