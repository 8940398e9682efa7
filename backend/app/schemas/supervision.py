from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.models.supervisor2_request import Supervisor2RequestStatus
from app.schemas.common import CamelModel, UserBrief


class Supervisor2RequestCreate(CamelModel):
    lecturer_id: str
    message: Optional[str] = Field(None, max_length=2000)


class Supervisor2Decision(CamelModel):
    message: Optional[str] = Field(None, max_length=2000)


class Supervisor2RequestResponse(CamelModel):
    id: str
    student_id: str
    thesis_id: str
    lecturer_id: str
    status: Supervisor2RequestStatus
    message: Optional[str] = None
    response_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    student: Optional[UserBrief] = None
    lecturer: Optional[UserBrief] = None


class Supervisor2RequestEnvelope(CamelModel):
    request: Supervisor2RequestResponse


class Supervisor2RequestListResponse(CamelModel):
    items: List[Supervisor2RequestResponse]


class PendingSupervisor2Response(CamelModel):
    pending: Optional[Supervisor2RequestResponse] = None
    can_create: bool
