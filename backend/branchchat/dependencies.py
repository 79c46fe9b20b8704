"""
FastAPI dependencies resolving the per-application services.
"""

from fastapi import Request

from .services.generation_service import GenerationService
from .services.message_store import MessageStore


def get_store(request: Request) -> MessageStore:
    return request.app.state.store


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service
