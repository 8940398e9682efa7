# Re-export all models for convenient imports
from app.models.user import User, UserRole
from app.models.thesis import Thesis
from app.models.milestone import Milestone, MilestoneStatus, MilestoneTemplate
from app.models.guidance import GuidanceSession, GuidanceStatus, GuidanceActivityLog
from app.models.supervisor2_request import Supervisor2Request, Supervisor2RequestStatus

__all__ = [
    # User
    "User",
    "UserRole",
    # Thesis & milestones
    "Thesis",
    "Milestone",
    "MilestoneStatus",
    "MilestoneTemplate",
    # Guidance
    "GuidanceSession",
    "GuidanceStatus",
    "GuidanceActivityLog",
    # Supervisor-2
    "Supervisor2Request",
    "Supervisor2RequestStatus",
]
