from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from georesolve.domain.address import AddressSnapshot, EntryMode, ResolutionStatus
from georesolve.schemas.catalog import Settlement


class SessionCreateRequest(BaseModel):
    mode: EntryMode = "postal_code_first"


class ModeRequest(BaseModel):
    mode: EntryMode


class PostalCodeInput(BaseModel):
    value: str = Field("", max_length=64)


class StateChoice(BaseModel):
    state_id: int


class MunicipalityChoice(BaseModel):
    municipality_id: int


class SettlementChoice(BaseModel):
    settlement_id: int


class SettlementSearch(BaseModel):
    term: str = Field("", max_length=200)


class PostalCodeChoice(BaseModel):
    postal_code: str


class CustomSettlementInput(BaseModel):
    name: str = Field("", max_length=1000)


class CustomSettlementSubmit(BaseModel):
    settlement_type: str = "Colonia"


class StreetFields(BaseModel):
    street: str | None = None
    exterior_number: str | None = None
    interior_number: str | None = None

    @field_validator("street", "exterior_number", "interior_number", mode="before")
    def _coerce_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)


class AddressSelectionView(BaseModel):
    mode: EntryMode
    state_id: int | None = None
    municipality_id: int | None = None
    settlement_id: int | None = None
    settlement_custom: str | None = None
    postal_code: str | None = None
    street: str = ""
    exterior_number: str = ""
    interior_number: str = ""


class AddressSessionResponse(BaseModel):
    session_id: UUID
    selection: AddressSelectionView
    status: ResolutionStatus
    candidates: list[Settlement] = Field(default_factory=list)
    postal_code_options: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    message: str | None = None
    state_name: str | None = None
    municipality_name: str | None = None

    @classmethod
    def from_snapshot(
        cls, session_id: UUID, snapshot: AddressSnapshot
    ) -> "AddressSessionResponse":
        sel = snapshot.selection
        return cls(
            session_id=session_id,
            selection=AddressSelectionView(
                mode=sel.mode,
                state_id=sel.state_id,
                municipality_id=sel.municipality_id,
                settlement_id=sel.settlement_id,
                settlement_custom=sel.settlement_custom,
                postal_code=sel.postal_code,
                street=sel.street,
                exterior_number=sel.exterior_number,
                interior_number=sel.interior_number,
            ),
            status=snapshot.status,
            candidates=list(snapshot.candidates),
            postal_code_options=list(snapshot.postal_code_options),
            warnings=list(snapshot.warnings),
            message=snapshot.message,
            state_name=snapshot.state_name,
            municipality_name=snapshot.municipality_name,
        )


class ResolvedResponse(BaseModel):
    session_id: UUID
    required: bool
    resolved: bool


class PayloadResponse(BaseModel):
    session_id: UUID
    fields: dict[str, Any] = Field(default_factory=dict)
