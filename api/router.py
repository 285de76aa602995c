"""Main API router that includes versioned routers."""

from fastapi import APIRouter

from api.v1 import auth, clients, health, projects

# Main API router
api_router = APIRouter()

# Include v1 routers
v1_router = APIRouter(prefix="/v1")
v1_router.include_router(health.router, tags=["health"])
v1_router.include_router(auth.router, tags=["auth"])
v1_router.include_router(clients.router, tags=["clients"])
v1_router.include_router(projects.router, tags=["projects"])

api_router.include_router(v1_router)
