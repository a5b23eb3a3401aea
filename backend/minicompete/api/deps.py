"""
FastAPI dependencies that hand out the objects built by the composition root.
"""

from fastapi import Request

from minicompete.bootstrap import Container
from minicompete.services.competition_store import CompetitionStore
from minicompete.services.registration_service import RegistrationService


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_competition_store(request: Request) -> CompetitionStore:
    return get_container(request).competitions


def get_registration_service(request: Request) -> RegistrationService:
    return get_container(request).registrations
