"""
REST client for the guidance API.

Used by client-side callers (dashboards, scripts) that drive the guidance
lifecycle over HTTP. Every failure surfaces as ``NetworkError``:

- non-2xx response: the server's ``message`` (shown to the user verbatim)
  or the fallback message when the body carries none
- transport failure (connection refused, timeout): the fallback message

No local state is changed before the server confirms a mutation; the
methods return what the server sent back.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import NetworkError
from app.core.logging_config import logger
from app.modules.guidance.availability import BusySlot, to_utc_naive


def _iso(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return to_utc_naive(datetime.fromisoformat(value.replace("Z", "+00:00")))


class GuidanceApiClient:
    """Async client for /api/v1 guidance, availability and milestone routes"""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=timeout or settings.API_TIMEOUT,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GuidanceApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @staticmethod
    def _server_message(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        message = body.get("message")
        if not message and isinstance(body.get("detail"), str):
            message = body["detail"]
        return message or None

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.warning(f"[GuidanceClient] {method} {path} failed: {e}")
            raise NetworkError() from e

        if response.is_success:
            return response.json() if response.content else {}

        message = self._server_message(response)
        logger.warning(f"[GuidanceClient] {method} {path} -> {response.status_code}: {message}")
        raise NetworkError(message, status_code=response.status_code)

    # ==================== Guidance ====================

    async def list_guidance(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"status": status} if status else None
        data = await self._request("GET", "/guidance", params=params)
        return data["items"]

    async def get_guidance(self, guidance_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/guidance/{guidance_id}")
        return data["guidance"]

    async def pending(self) -> Dict[str, Any]:
        """``{"pending": Session | None, "canCreate": bool}``"""
        return await self._request("GET", "/guidance/pending")

    async def upcoming(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/guidance/upcoming")
        return data["items"]

    async def activity(self, guidance_id: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/guidance/{guidance_id}/activity")
        return data["items"]

    async def create_guidance(
        self,
        supervisor_id: str,
        requested_date: datetime,
        duration_minutes: Optional[int] = None,
        student_notes: Optional[str] = None,
        milestone_id: Optional[str] = None,
        document_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"supervisorId": supervisor_id, "requestedDate": _iso(requested_date)}
        if duration_minutes is not None:
            body["durationMinutes"] = duration_minutes
        if student_notes is not None:
            body["studentNotes"] = student_notes
        if milestone_id:
            body["milestoneId"] = milestone_id
        if document_url:
            body["documentUrl"] = document_url
        data = await self._request("POST", "/guidance", json=body)
        return data["guidance"]

    async def reschedule(self, guidance_id: str, requested_date: datetime,
                         student_notes: Optional[str] = None,
                         duration_minutes: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"requestedDate": _iso(requested_date)}
        if student_notes is not None:
            body["studentNotes"] = student_notes
        if duration_minutes is not None:
            body["durationMinutes"] = duration_minutes
        data = await self._request("POST", f"/guidance/{guidance_id}/reschedule", json=body)
        return data["guidance"]

    async def cancel(self, guidance_id: str, reason: str) -> Dict[str, Any]:
        data = await self._request("POST", f"/guidance/{guidance_id}/cancel", json={"reason": reason})
        return data["guidance"]

    async def update_notes(self, guidance_id: str, student_notes: str) -> Dict[str, Any]:
        data = await self._request("PATCH", f"/guidance/{guidance_id}/notes",
                                   json={"studentNotes": student_notes})
        return data["guidance"]

    async def approve(self, guidance_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        data = await self._request("POST", f"/guidance/{guidance_id}/approve", json={"message": message})
        return data["guidance"]

    async def reject(self, guidance_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        data = await self._request("POST", f"/guidance/{guidance_id}/reject", json={"message": message})
        return data["guidance"]

    async def submit_summary(self, guidance_id: str, session_summary: str,
                             action_items: str = "") -> Dict[str, Any]:
        data = await self._request(
            "POST",
            f"/guidance/{guidance_id}/summary",
            json={"sessionSummary": session_summary, "actionItems": action_items},
        )
        return data["guidance"]

    async def approve_summary(self, guidance_id: str, message: Optional[str] = None) -> Dict[str, Any]:
        data = await self._request("POST", f"/guidance/{guidance_id}/approve-summary",
                                   json={"message": message})
        return data["guidance"]

    # ==================== Availability ====================

    async def busy_slots(self, supervisor_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET",
            f"/supervisors/{supervisor_id}/availability",
            params={"start": _iso(start), "end": _iso(end)},
        )
        return data["busySlots"]

    async def check_availability(self, supervisor_id: str, start: datetime,
                                 duration_minutes: int) -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"/supervisors/{supervisor_id}/availability/check",
            params={"start": _iso(start), "durationMinutes": duration_minutes},
        )

    # ==================== Milestones ====================

    async def thesis_milestones(self, thesis_id: str) -> Dict[str, Any]:
        """``{"milestones": [...], "progress": {...}}``"""
        return await self._request("GET", f"/thesis/{thesis_id}/milestones")

    async def next_milestone(self, thesis_id: str) -> Optional[Dict[str, Any]]:
        data = await self._request("GET", f"/thesis/{thesis_id}/milestones/next")
        return data.get("milestone")


class HttpBusySlotFetcher:
    """BusySlotFetcher backed by the availability endpoint"""

    def __init__(self, client: GuidanceApiClient):
        self.client = client

    async def fetch(self, supervisor_id: str, window_start: datetime, window_end: datetime) -> List[BusySlot]:
        raw = await self.client.busy_slots(supervisor_id, window_start, window_end)
        return [
            BusySlot(
                start=_parse_datetime(item["start"]),
                end=_parse_datetime(item["end"]),
                student_name=item.get("studentName"),
                guidance_id=item.get("guidanceId"),
            )
            for item in raw
        ]
