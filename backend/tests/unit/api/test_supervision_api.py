"""
Unit Tests for Supervisor-2 request and supervisor availability endpoints
"""
import pytest
from httpx import AsyncClient

from tests.factories import at, auth_headers_for

API = "/api/v1"


@pytest.fixture
async def solo_thesis(make_thesis, other_student, supervisor):
    return await make_thesis(other_student, supervisor)


class TestSupervisor2Requests:
    """Test /supervisor2-requests"""

    @pytest.mark.asyncio
    async def test_request_and_approve(self, client: AsyncClient, other_student, second_supervisor,
                                       solo_thesis):
        """Test the student asks, the lecturer accepts"""
        student_headers = auth_headers_for(other_student)

        created = await client.post(
            f"{API}/supervisor2-requests",
            json={"lecturerId": str(second_supervisor.id), "message": "Please co-supervise"},
            headers=student_headers,
        )
        assert created.status_code == 201
        request = created.json()["request"]
        assert request["status"] == "requested"
        assert request["lecturer"]["fullName"] == "Dr. Rina Kusuma"

        pending = await client.get(f"{API}/supervisor2-requests/pending", headers=student_headers)
        assert pending.json()["canCreate"] is False

        approved = await client.post(f"{API}/supervisor2-requests/{request['id']}/approve",
                                     json={"message": "Yes"}, headers=auth_headers_for(second_supervisor))
        assert approved.json()["request"]["status"] == "accepted"
        assert approved.json()["request"]["responseMessage"] == "Yes"

    @pytest.mark.asyncio
    async def test_duplicate_pending(self, client: AsyncClient, other_student, second_supervisor,
                                     outsider_lecturer, solo_thesis):
        """Test the second pending request is refused with 409"""
        headers = auth_headers_for(other_student)
        await client.post(f"{API}/supervisor2-requests", json={"lecturerId": str(second_supervisor.id)},
                          headers=headers)

        response = await client.post(f"{API}/supervisor2-requests",
                                     json={"lecturerId": str(outsider_lecturer.id)}, headers=headers)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "PENDING_REQUEST_EXISTS"

    @pytest.mark.asyncio
    async def test_student_cannot_approve(self, client: AsyncClient, other_student, second_supervisor,
                                          solo_thesis):
        headers = auth_headers_for(other_student)
        created = await client.post(f"{API}/supervisor2-requests",
                                    json={"lecturerId": str(second_supervisor.id)}, headers=headers)

        response = await client.post(f"{API}/supervisor2-requests/{created.json()['request']['id']}/approve",
                                     headers=headers)

        assert response.status_code == 403


class TestSupervisorAvailability:
    """Test /supervisors/{id}/availability"""

    @pytest.mark.asyncio
    async def test_busy_slots_and_check(self, client: AsyncClient, student_headers, other_student,
                                        supervisor, thesis, other_thesis):
        """Test a booked session shows up and blocks an overlapping check"""
        await client.post(
            f"{API}/guidance",
            json={"supervisorId": str(supervisor.id), "requestedDate": at(10).isoformat()},
            headers=auth_headers_for(other_student),
        )

        window = await client.get(
            f"{API}/supervisors/{supervisor.id}/availability",
            params={"start": at(0).isoformat(), "end": at(23).isoformat()},
            headers=student_headers,
        )
        slots = window.json()["busySlots"]
        assert len(slots) == 1
        assert slots[0]["studentName"] == "Siti Rahma"

        check = await client.get(
            f"{API}/supervisors/{supervisor.id}/availability/check",
            params={"start": at(10, 30).isoformat(), "durationMinutes": 30},
            headers=student_headers,
        )
        assert check.status_code == 200
        assert check.json()["status"] == "conflict"

        clear = await client.get(
            f"{API}/supervisors/{supervisor.id}/availability/check",
            params={"start": at(11).isoformat()},
            headers=student_headers,
        )
        assert clear.json()["status"] == "clear"

    @pytest.mark.asyncio
    async def test_window_validation(self, client: AsyncClient, student_headers, supervisor):
        """Test reversed and oversized windows are refused"""
        reversed_window = await client.get(
            f"{API}/supervisors/{supervisor.id}/availability",
            params={"start": at(12).isoformat(), "end": at(9).isoformat()},
            headers=student_headers,
        )
        assert reversed_window.status_code == 400

        too_wide = await client.get(
            f"{API}/supervisors/{supervisor.id}/availability",
            params={"start": at(9, day=1).isoformat(), "end": at(9).replace(month=5).isoformat()},
            headers=student_headers,
        )
        assert too_wide.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_supervisor(self, client: AsyncClient, student_headers, student):
        """Test a non-lecturer id is a 404"""
        response = await client.get(
            f"{API}/supervisors/{student.id}/availability/check",
            params={"start": at(10).isoformat()},
            headers=student_headers,
        )

        assert response.status_code == 404
