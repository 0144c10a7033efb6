from fastapi import APIRouter
from app.api.v1.endpoints import generations, previews, health

api_router = APIRouter()

# Deep health check endpoints (/health/live, /health/ready, /health/deep)
api_router.include_router(health.router)


@api_router.get("/health", tags=["Health"])
async def health_check():
    """Simple health check endpoint for load balancer"""
    return {"status": "healthy"}


api_router.include_router(generations.router)
api_router.include_router(previews.router)
