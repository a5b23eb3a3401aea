"""
Competition endpoints, including the concurrency-safe registration.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse

from minicompete.api.deps import get_competition_store, get_registration_service
from minicompete.core.security import Principal, Role, require_role
from minicompete.schemas.competition import CompetitionCreate, CompetitionDetail, CompetitionResponse
from minicompete.schemas.registration import RegistrationCancelResponse, RegistrationResponse
from minicompete.services.competition_store import CompetitionStore
from minicompete.services.registration_service import RegistrationService

router = APIRouter(prefix="/competitions", tags=["Competitions"])

REPLAY_HEADER = "Idempotent-Replayed"


@router.post("", response_model=CompetitionResponse, status_code=status.HTTP_201_CREATED)
async def create_competition(
    competition_data: CompetitionCreate,
    principal: Principal = Depends(require_role(Role.ORGANIZER)),
    store: CompetitionStore = Depends(get_competition_store),
):
    """Create a competition. Organizers only."""
    return await store.create_competition(competition_data, principal.user_id)


@router.get("/{competition_id}", response_model=CompetitionDetail)
async def get_competition(
    competition_id: int,
    store: CompetitionStore = Depends(get_competition_store),
):
    """Competition details with the live registration count and seats left."""
    return await store.get_competition(competition_id)


@router.post(
    "/{competition_id}/register",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_for_competition(
    competition_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    principal: Principal = Depends(require_role(Role.PARTICIPANT)),
    service: RegistrationService = Depends(get_registration_service),
):
    """
    Register the caller for a competition.

    Send an Idempotency-Key header to make retries safe: a repeated key gets
    the original response back (with `Idempotent-Replayed: true`) and never
    creates a second registration.

    409 with `"error": "Busy"` means another registration for the same
    competition is in flight; retry shortly.
    """
    outcome = await service.register(competition_id, principal.user_id, idempotency_key)
    headers = {REPLAY_HEADER: "true"} if outcome.replayed else None
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=outcome.response, headers=headers)


@router.delete("/{competition_id}/register", response_model=RegistrationCancelResponse)
async def cancel_registration(
    competition_id: int,
    principal: Principal = Depends(require_role(Role.PARTICIPANT)),
    store: CompetitionStore = Depends(get_competition_store),
):
    """Cancel the caller's registration and free the seat."""
    registration = await store.cancel_registration(competition_id, principal.user_id)
    return RegistrationCancelResponse(
        message="Registration cancelled successfully",
        registration_id=registration.id,
        competition_id=competition_id,
    )
