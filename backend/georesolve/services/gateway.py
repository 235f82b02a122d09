from __future__ import annotations

from typing import Any, Protocol, Sequence, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from georesolve.core.config import get_settings
from georesolve.core.logging import get_logger
from georesolve.schemas.catalog import (
    CustomSettlementRequest,
    GeoState,
    Municipality,
    PostalCodeLookup,
    PostalCodeSummary,
    Settlement,
)


_logger = get_logger(__name__)

T = TypeVar("T")

_STATES = TypeAdapter(list[GeoState])
_MUNICIPALITIES = TypeAdapter(list[Municipality])
_SETTLEMENTS = TypeAdapter(list[Settlement])
_POSTAL_CODES = TypeAdapter(list[PostalCodeSummary])


class CatalogGatewayError(RuntimeError):
    """Raised when the catalog service cannot be reached or answers badly."""


class CatalogGateway(Protocol):
    """Read/write access to the SEPOMEX reference catalog."""

    async def list_states(self) -> Sequence[GeoState]: ...

    async def list_municipalities(self, state_id: int) -> Sequence[Municipality]: ...

    async def lookup_by_postal_code(self, code: str) -> PostalCodeLookup | None: ...

    async def list_settlements_by_municipality(
        self,
        municipality_id: int,
        search: str | None = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> Sequence[Settlement]: ...

    async def list_postal_codes_by_municipality(
        self, municipality_id: int
    ) -> Sequence[PostalCodeSummary]: ...

    async def create_custom_settlement(
        self, request: CustomSettlementRequest
    ) -> Settlement: ...


class HttpCatalogGateway:
    """CatalogGateway backed by the catalog REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        api_token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_states(self) -> list[GeoState]:
        payload = await self._get("/catalogs/states")
        return _parse(_STATES, payload, "states")

    async def list_municipalities(self, state_id: int) -> list[Municipality]:
        payload = await self._get(f"/catalogs/states/{state_id}/municipalities")
        return _parse(_MUNICIPALITIES, payload, "municipalities")

    async def lookup_by_postal_code(self, code: str) -> PostalCodeLookup | None:
        payload = await self._get(
            "/catalogs/settlements",
            params={"postal_code": code},
            allow_not_found=True,
        )
        if not isinstance(payload, dict):
            return None
        if not payload.get("state") or not payload.get("municipality"):
            _logger.info("Postal code not in catalog", postal_code=code)
            return None

        municipality = payload["municipality"]
        municipality_id = (
            municipality.get("id") if isinstance(municipality, dict) else None
        )
        settlements = [
            {"municipality_id": municipality_id, "postal_code": code, **item}
            for item in payload.get("settlements") or ()
            if isinstance(item, dict)
        ]
        payload = {
            **payload,
            "postal_code": payload.get("postal_code") or code,
            "settlements": settlements,
        }
        try:
            return PostalCodeLookup.model_validate(payload)
        except ValidationError as exc:
            raise CatalogGatewayError(f"Malformed postal code lookup: {exc}") from exc

    async def list_settlements_by_municipality(
        self,
        municipality_id: int,
        search: str | None = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> list[Settlement]:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if search:
            params["q"] = search
        payload = await self._get(
            f"/catalogs/municipalities/{municipality_id}/settlements", params=params
        )
        return _parse(_SETTLEMENTS, payload, "settlements")

    async def list_postal_codes_by_municipality(
        self, municipality_id: int
    ) -> list[PostalCodeSummary]:
        payload = await self._get(
            f"/catalogs/municipalities/{municipality_id}/postal-codes"
        )
        return _parse(_POSTAL_CODES, payload, "postal codes")

    async def create_custom_settlement(
        self, request: CustomSettlementRequest
    ) -> Settlement:
        try:
            response = await self._client.post(
                "/catalogs/settlements", json=request.model_dump()
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            _logger.warning(
                "Custom settlement creation failed",
                postal_code=request.postal_code,
                error=str(exc),
            )
            raise CatalogGatewayError(str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise CatalogGatewayError("Invalid JSON from catalog") from exc
        if isinstance(payload, dict) and "municipality_id" not in payload:
            payload = {**payload, "municipality_id": request.municipality_id}
        try:
            return Settlement.model_validate(payload)
        except ValidationError as exc:
            raise CatalogGatewayError(f"Malformed settlement: {exc}") from exc

    async def _get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        try:
            response = await self._client.get(path, params=params)
            if allow_not_found and response.status_code == httpx.codes.NOT_FOUND:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            _logger.warning("Catalog request failed", path=path, error=str(exc))
            raise CatalogGatewayError(str(exc)) from exc
        except ValueError as exc:
            _logger.warning("Catalog returned invalid JSON", path=path)
            raise CatalogGatewayError(f"Invalid JSON from {path}") from exc


def _parse(adapter: TypeAdapter[list[T]], payload: Any, label: str) -> list[T]:
    if payload is None:
        return []
    try:
        return adapter.validate_python(payload)
    except ValidationError as exc:
        raise CatalogGatewayError(f"Malformed {label} payload: {exc}") from exc


_gateway: HttpCatalogGateway | None = None


def get_catalog_gateway() -> HttpCatalogGateway:
    global _gateway
    if _gateway is None:
        settings = get_settings()
        _gateway = HttpCatalogGateway(
            settings.catalog_base_url,
            api_token=settings.catalog_api_token,
            timeout=settings.catalog_timeout,
        )
    return _gateway


async def close_catalog_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None
