# API endpoints
from . import guidance, supervisors, milestones, supervision, health

__all__ = ["guidance", "supervisors", "milestones", "supervision", "health"]
