# Supervisor-2 request flow

from app.modules.supervision.service import Supervisor2Service

__all__ = ["Supervisor2Service"]
