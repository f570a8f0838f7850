"""Agregador de routers de la API."""
from fastapi import APIRouter
from grantstore.api.routers import health

api_router = APIRouter()
api_router.include_router(health.router)
