"""Shared FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from core.factory import AppServices


def get_services(request: Request) -> AppServices:
    """The service graph built by the application lifespan."""
    return request.app.state.services


Services = Annotated[AppServices, Depends(get_services)]
