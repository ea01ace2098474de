"""
Shared API Dependencies
========================

FastAPI dependencies resolving the service container from app state.
"""

from fastapi import Request

from auditflow.bootstrap import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
