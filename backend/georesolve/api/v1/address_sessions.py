from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from georesolve.core.logging import bind_session_context
from georesolve.schemas.address import (
    AddressSessionResponse,
    CustomSettlementInput,
    CustomSettlementSubmit,
    ModeRequest,
    MunicipalityChoice,
    PayloadResponse,
    PostalCodeChoice,
    PostalCodeInput,
    ResolvedResponse,
    SessionCreateRequest,
    SettlementChoice,
    SettlementSearch,
    StateChoice,
    StreetFields,
)
from georesolve.services.resolver import AddressResolver
from georesolve.services.sessions import AddressSessionRegistry, get_session_registry


router = APIRouter()


def get_registry() -> AddressSessionRegistry:
    return get_session_registry()


async def get_resolver(
    session_id: UUID,
    registry: AddressSessionRegistry = Depends(get_registry),
) -> AddressResolver:
    bind_session_context(str(session_id))
    resolver = await registry.get(session_id)
    if resolver is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Address session not found")
    return resolver


def _respond(session_id: UUID, resolver: AddressResolver) -> AddressSessionResponse:
    return AddressSessionResponse.from_snapshot(session_id, resolver.snapshot())


@router.post(
    "",
    response_model=AddressSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def open_session(
    payload: SessionCreateRequest,
    registry: AddressSessionRegistry = Depends(get_registry),
) -> AddressSessionResponse:
    session_id, resolver = await registry.open(payload.mode)
    return _respond(session_id, resolver)


@router.get("/{session_id}", response_model=AddressSessionResponse)
async def read_session(
    session_id: UUID, resolver: AddressResolver = Depends(get_resolver)
) -> AddressSessionResponse:
    return _respond(session_id, resolver)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(
    session_id: UUID,
    registry: AddressSessionRegistry = Depends(get_registry),
) -> None:
    if not await registry.close(session_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Address session not found")


@router.put("/{session_id}/mode", response_model=AddressSessionResponse)
async def set_mode(
    session_id: UUID,
    payload: ModeRequest,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    resolver.set_mode(payload.mode)
    return _respond(session_id, resolver)


@router.put("/{session_id}/postal-code", response_model=AddressSessionResponse)
async def enter_postal_code(
    session_id: UUID,
    payload: PostalCodeInput,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    resolver.enter_postal_code(payload.value)
    await resolver.settled()
    return _respond(session_id, resolver)


@router.put("/{session_id}/state", response_model=AddressSessionResponse)
async def choose_state(
    session_id: UUID,
    payload: StateChoice,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    await resolver.load_states()
    await resolver.choose_state(payload.state_id)
    return _respond(session_id, resolver)


@router.put("/{session_id}/municipality", response_model=AddressSessionResponse)
async def choose_municipality(
    session_id: UUID,
    payload: MunicipalityChoice,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    await resolver.choose_municipality(payload.municipality_id)
    return _respond(session_id, resolver)


@router.put("/{session_id}/settlement-search", response_model=AddressSessionResponse)
async def search_settlements(
    session_id: UUID,
    payload: SettlementSearch,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    resolver.search_settlements(payload.term)
    await resolver.settled()
    return _respond(session_id, resolver)


@router.put("/{session_id}/settlement", response_model=AddressSessionResponse)
async def choose_settlement(
    session_id: UUID,
    payload: SettlementChoice,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    resolver.choose_settlement(payload.settlement_id)
    return _respond(session_id, resolver)


@router.put("/{session_id}/postal-code-choice", response_model=AddressSessionResponse)
async def choose_postal_code(
    session_id: UUID,
    payload: PostalCodeChoice,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    resolver.choose_postal_code(payload.postal_code)
    return _respond(session_id, resolver)


@router.put("/{session_id}/custom-settlement", response_model=AddressSessionResponse)
async def enable_custom_settlement(
    session_id: UUID,
    payload: CustomSettlementInput,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    resolver.enable_custom_settlement(payload.name)
    return _respond(session_id, resolver)


@router.delete(
    "/{session_id}/custom-settlement", response_model=AddressSessionResponse
)
async def disable_custom_settlement(
    session_id: UUID, resolver: AddressResolver = Depends(get_resolver)
) -> AddressSessionResponse:
    resolver.disable_custom_settlement()
    return _respond(session_id, resolver)


@router.post(
    "/{session_id}/custom-settlement/submit", response_model=AddressSessionResponse
)
async def submit_custom_settlement(
    session_id: UUID,
    payload: CustomSettlementSubmit,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    await resolver.submit_custom_settlement(payload.settlement_type)
    return _respond(session_id, resolver)


@router.put("/{session_id}/street", response_model=AddressSessionResponse)
async def set_street_fields(
    session_id: UUID,
    payload: StreetFields,
    resolver: AddressResolver = Depends(get_resolver),
) -> AddressSessionResponse:
    resolver.set_street_fields(
        payload.street, payload.exterior_number, payload.interior_number
    )
    return _respond(session_id, resolver)


@router.get("/{session_id}/resolved", response_model=ResolvedResponse)
async def is_resolved(
    session_id: UUID,
    required: bool = Query(True),
    resolver: AddressResolver = Depends(get_resolver),
) -> ResolvedResponse:
    return ResolvedResponse(
        session_id=session_id,
        required=required,
        resolved=resolver.is_resolved(required),
    )


@router.get("/{session_id}/payload", response_model=PayloadResponse)
async def read_payload(
    session_id: UUID,
    prefix: str = Query("", max_length=32),
    resolver: AddressResolver = Depends(get_resolver),
) -> PayloadResponse:
    return PayloadResponse(session_id=session_id, fields=resolver.to_payload(prefix))
