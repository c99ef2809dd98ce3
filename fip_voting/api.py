"""HTTP routes for fip-voting.

Each route is a thin adapter: it pulls query and body values, calls the
matching :class:`VotingService` method and maps an error ``kind`` to a status
code. Routes are plain ``def`` functions because the core blocks on the store
and the chain RPC, so FastAPI runs them in its thread pool.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .models import MAX_PROPOSAL_NUMBER
from .service import VotingService

STATUS_BY_KIND: Dict[str, int] = {
    "invalid_input": 400,
    "invalid_signature": 400,
    "invalid_message_format": 400,
    "invalid_network": 400,
    "invalid_address": 400,
    "duplicate_vote": 400,
    "no_authorized_providers": 400,
    "not_authorized": 403,
    "vote_not_active": 403,
    "already_exists": 403,
    "not_found": 404,
    "voter_not_registered": 404,
    "oracle_unavailable": 500,
    "store_error": 500,
    "decode_error": 500,
}


class SignedMessage(BaseModel):
    signature: str
    message: str


class SignedRegistration(SignedMessage):
    worker_address: str


def _respond(result: Dict[str, Any]) -> Any:
    if "error" in result:
        status_code = STATUS_BY_KIND.get(str(result.get("kind")), 500)
        return JSONResponse(status_code=status_code, content=result)
    return result


def get_service(request: Request) -> VotingService:
    return request.app.state.service


router = APIRouter(prefix="/filecoin", tags=["filecoin"])


@router.get("/vote")
def get_vote(
    network: str,
    fip_number: int = Query(..., ge=0, le=MAX_PROPOSAL_NUMBER),
    service: VotingService = Depends(get_service),
):
    return _respond(service.vote(network, fip_number))


@router.get("/results")
def get_results(
    network: str,
    fip_number: int = Query(..., ge=0, le=MAX_PROPOSAL_NUMBER),
    service: VotingService = Depends(get_service),
):
    return _respond(service.results(network, fip_number))


@router.get("/storage")
def get_storage(
    network: str,
    fip_number: int = Query(..., ge=0, le=MAX_PROPOSAL_NUMBER),
    service: VotingService = Depends(get_service),
):
    return _respond(service.storage(network, fip_number))


@router.get("/delegates")
def get_delegates(network: str, address: str, service: VotingService = Depends(get_service)):
    return _respond(service.delegates(network, address))


@router.get("/votingpower")
def get_voting_power(network: str, address: str, service: VotingService = Depends(get_service)):
    return _respond(service.voting_power(network, address))


@router.get("/voterstarters")
def get_vote_starters(network: str, service: VotingService = Depends(get_service)):
    return _respond(service.vote_starters(network))


@router.get("/activevotes")
def get_active_votes(network: str, service: VotingService = Depends(get_service)):
    return _respond(service.active_votes(network))


@router.get("/concludedvotes")
def get_concluded_votes(network: str, service: VotingService = Depends(get_service)):
    return _respond(service.concluded_votes(network))


@router.get("/allconcludedvotes")
def get_all_concluded_votes(network: str, service: VotingService = Depends(get_service)):
    return _respond(service.all_concluded_votes(network))


@router.post("/vote")
def register_vote(
    body: SignedMessage,
    fip_number: int = Query(..., ge=0, le=MAX_PROPOSAL_NUMBER),
    service: VotingService = Depends(get_service),
):
    return _respond(service.cast_vote(fip_number, body.model_dump()))


@router.post("/startvote")
def start_vote(body: SignedMessage, network: str, service: VotingService = Depends(get_service)):
    return _respond(service.start_vote(network, body.model_dump()))


@router.post("/registerstarter")
def register_vote_starter(body: SignedMessage, network: str, service: VotingService = Depends(get_service)):
    return _respond(service.register_starter(network, body.model_dump()))


@router.post("/register")
def register_voter(body: SignedRegistration, service: VotingService = Depends(get_service)):
    return _respond(service.register_voter(body.model_dump()))


@router.post("/unregister")
def unregister_voter(body: SignedRegistration, service: VotingService = Depends(get_service)):
    return _respond(service.unregister_voter(body.model_dump()))


def create_app(service: VotingService) -> FastAPI:
    app = FastAPI(
        title="FIP Voting",
        description="Storage-weighted voting on Filecoin Improvement Proposals",
        version=__version__,
    )

    if service.config.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            max_age=3600,
        )

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "invalid request",
                "kind": "invalid_message_format",
                "detail": jsonable_encoder(exc.errors()),
            },
        )

    app.state.service = service
    app.include_router(router)
    return app
