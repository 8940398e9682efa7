from fastapi import APIRouter
from app.api.v1.endpoints import guidance, supervisors, milestones, supervision, health

api_router = APIRouter()

# Deep health check endpoints (use /health/ready for load balancers)
api_router.include_router(health.router)


# Simple health check endpoint for load balancer (backward compatible)
@api_router.get("/health", tags=["Health"])
async def health_check():
    """Simple health check endpoint for load balancer"""
    return {"status": "healthy", "service": "thesis-supervision-backend"}


api_router.include_router(guidance.router)
api_router.include_router(supervisors.router)
api_router.include_router(milestones.router)
api_router.include_router(supervision.router)
