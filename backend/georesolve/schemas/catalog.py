from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CatalogEntry(BaseModel):
    """Immutable SEPOMEX reference data."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class GeoState(CatalogEntry):
    id: int
    code: str
    name: str


class Municipality(CatalogEntry):
    id: int
    code: str
    name: str
    state_id: int


class Settlement(CatalogEntry):
    id: int
    name: str
    settlement_type: str | None = None
    municipality_id: int
    postal_codes: frozenset[str] = Field(default_factory=frozenset)
    is_official: bool = True

    @model_validator(mode="before")
    @classmethod
    def _fold_postal_codes(cls, data: Any) -> Any:
        # The lookup endpoint returns one row per (settlement, postal code) with
        # a scalar `postal_code`; the grouped endpoint returns `postal_codes`.
        if not isinstance(data, dict):
            return data
        codes = set(data.get("postal_codes") or ())
        single = data.get("postal_code")
        if single:
            codes.add(single)
        if "type" in data and "settlement_type" not in data:
            data = {**data, "settlement_type": data["type"]}
        return {**data, "postal_codes": frozenset(codes)}


class PostalCodeLookup(CatalogEntry):
    postal_code: str
    state: GeoState
    municipality: Municipality
    settlements: tuple[Settlement, ...] = ()


class PostalCodeSummary(CatalogEntry):
    postal_code: str
    settlement_count: int = Field(0, ge=0)


class CustomSettlementRequest(BaseModel):
    postal_code: str = Field(..., pattern=r"^\d{5}$")
    name: str = Field(..., min_length=2, max_length=200)
    municipality_id: int
    settlement_type: str = "Colonia"
