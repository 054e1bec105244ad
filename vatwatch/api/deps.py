"""FastAPI dependencies resolving the services built in the application lifespan."""

from __future__ import annotations

from fastapi import Request

from vatwatch.lifecycle.admission import MonitoringService
from vatwatch.lifecycle.engine import LifecycleEngine
from vatwatch.store.requests import RequestStore


def get_store(request: Request) -> RequestStore:
    return request.app.state.store


def get_engine(request: Request) -> LifecycleEngine:
    return request.app.state.engine


def get_monitoring(request: Request) -> MonitoringService:
    return request.app.state.monitoring
