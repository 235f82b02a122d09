from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from georesolve.core.config import get_settings
from georesolve.core.logging import get_logger
from georesolve.domain.address import (
    CUSTOM_SETTLEMENT_MAX_LENGTH,
    CUSTOM_SETTLEMENT_MIN_LENGTH,
    ENTRY_MODES,
    EXTERIOR_NUMBER_MAX_LENGTH,
    INTERIOR_NUMBER_MAX_LENGTH,
    POSTAL_CODE_LENGTH,
    STREET_MAX_LENGTH,
    AddressSelection,
    AddressSnapshot,
    EntryMode,
    ResolutionState,
    clamp,
    sanitize_postal_code,
)
from georesolve.domain.text import SearchIndex
from georesolve.schemas.catalog import (
    CustomSettlementRequest,
    GeoState,
    Municipality,
    PostalCodeLookup,
    PostalCodeSummary,
    Settlement,
)
from georesolve.services.cache import CatalogCache
from georesolve.services.debounce import DebounceScheduler
from georesolve.services.gateway import CatalogGatewayError


_logger = get_logger(__name__)

T = TypeVar("T")

_POSTAL_CODE_KEY = "postal_code"
_MUNICIPALITIES_KEY = "municipalities"
_SETTLEMENTS_KEY = "settlements"
_CUSTOM_SETTLEMENT_KEY = "custom_settlement"

_LOOKUP_FAILURES = (CatalogGatewayError, asyncio.TimeoutError)


class AddressResolver:
    """
    Own the address of one form and apply every user action to it.

    Two workflows are supported. In ``postal_code_first`` the typed postal
    code is looked up (debounced) and state, municipality and, when it is
    unambiguous, the settlement are filled in. In ``location_first`` the user
    walks state -> municipality -> settlement and the postal code is derived
    from the settlement. Forms read :meth:`snapshot` and never touch the
    selection directly.
    """

    def __init__(
        self,
        cache: CatalogCache,
        *,
        mode: EntryMode = "postal_code_first",
        scheduler: DebounceScheduler | None = None,
        debounce_seconds: float | None = None,
        lookup_timeout: float | None = None,
        settlement_page_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self._cache = cache
        self._scheduler = scheduler or DebounceScheduler()
        self._debounce_seconds = (
            settings.debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._lookup_timeout = (
            settings.lookup_timeout if lookup_timeout is None else lookup_timeout
        )
        self._page_limit = settlement_page_limit or settings.settlement_page_limit

        self._selection = AddressSelection(mode=mode)
        self._state = ResolutionState()
        self._municipalities: tuple[Municipality, ...] = ()
        self._settlements: tuple[Settlement, ...] = ()
        self._known_settlements: dict[int, Settlement] = {}
        self._selected: Settlement | None = None
        self._postal_code_summary: tuple[PostalCodeSummary, ...] = ()
        self._settlement_search = ""

    # ------------------------------------------------------------------ reads

    @property
    def mode(self) -> EntryMode:
        return self._selection.mode

    @property
    def postal_code_summary(self) -> tuple[PostalCodeSummary, ...]:
        return self._postal_code_summary

    def snapshot(self) -> AddressSnapshot:
        return AddressSnapshot(
            selection=self._selection.copy(),
            status=self._state.status,
            candidates=self._settlements,
            postal_code_options=tuple(self._state.postal_code_options),
            warnings=tuple(self._state.warnings),
            message=self._state.message,
            state_name=self._state.state_name,
            municipality_name=self._state.municipality_name,
        )

    def is_resolved(self, required: bool) -> bool:
        """Tell the owning form whether the address can be saved."""

        if not required:
            return True
        sel = self._selection
        has_settlement = (sel.settlement_id is not None) != bool(sel.settlement_custom)
        return bool(
            sel.postal_code
            and sel.state_id is not None
            and sel.municipality_id is not None
            and has_settlement
            and sel.street
            and sel.exterior_number
        )

    def to_payload(self, prefix: str = "") -> dict[str, object]:
        return self._selection.to_payload(prefix)

    async def load_states(self) -> tuple[GeoState, ...]:
        try:
            return await self._bounded(self._cache.states())
        except _LOOKUP_FAILURES as exc:
            _logger.warning("State list unavailable", error=str(exc) or "timeout")
            self._fail("Could not load states")
            return ()

    def filter_states(self, query: str | None = None) -> list[GeoState]:
        states = self._cache.peek("states") or ()
        return SearchIndex(states).filter(query)

    def filter_municipalities(self, query: str | None = None) -> list[Municipality]:
        return SearchIndex(self._municipalities).filter(query)

    async def settled(self) -> None:
        """Wait for every scheduled or in-flight debounced lookup to finish."""

        for key in (_POSTAL_CODE_KEY, _SETTLEMENTS_KEY):
            await self._scheduler.wait(key)

    def close(self) -> None:
        self._scheduler.cancel_all()

    # --------------------------------------------------------------- commands

    def set_mode(self, mode: EntryMode) -> None:
        if mode not in ENTRY_MODES:
            _logger.info("Unknown entry mode ignored", mode=mode)
            return

        self._scheduler.cancel_all()
        self._selection.mode = mode
        self._selection.clear_geo()
        self._state.reset()
        self._municipalities = ()
        self._postal_code_summary = ()
        self._settlement_search = ""
        self._forget_settlements()
        _logger.info("Entry mode changed", mode=mode)

    def enter_postal_code(self, raw: str) -> None:
        sel = self._selection
        code = sanitize_postal_code(raw)

        if sel.mode == "location_first":
            # Manual entry is only needed when the catalog cannot supply the
            # code: a custom settlement or a settlement without postal codes.
            if self._selected is not None and self._selected.postal_codes:
                _logger.info(
                    "Postal code entry ignored",
                    reason="derived from settlement",
                    settlement_id=self._selected.id,
                )
                return
            sel.postal_code = code or None
            return

        sel.postal_code = code or None
        self._state.message = None
        self._state.warnings = []
        if self._selected is not None and code not in self._selected.postal_codes:
            sel.settlement_id = None
            self._selected = None

        if len(code) < POSTAL_CODE_LENGTH:
            self._scheduler.cancel(_POSTAL_CODE_KEY)
            self._clear_resolved_location()
            self._state.status = "idle"
            return

        self._state.status = "loading"
        self._scheduler.schedule(
            _POSTAL_CODE_KEY,
            self._debounce_seconds,
            lambda token: self._lookup_postal_code(code, token),
        )

    async def choose_state(self, state_id: int) -> None:
        sel = self._selection
        if sel.mode != "location_first":
            _logger.info("State choice ignored", reason="postal code workflow")
            return

        states = self._cache.peek("states")
        state = None
        if states is not None:
            state = next((item for item in states if item.id == state_id), None)
            if state is None:
                _logger.info("Unknown state ignored", state_id=state_id)
                return

        self._scheduler.cancel(_SETTLEMENTS_KEY)
        sel.state_id = state_id
        sel.municipality_id = None
        sel.settlement_id = None
        sel.settlement_custom = None
        sel.postal_code = None
        self._state.reset()
        self._state.state_name = state.name if state else None
        self._municipalities = ()
        self._postal_code_summary = ()
        self._settlement_search = ""
        self._forget_settlements()

        token = self._scheduler.issue(_MUNICIPALITIES_KEY)
        self._state.status = "loading"
        try:
            municipalities = await self._bounded(self._cache.municipalities(state_id))
        except _LOOKUP_FAILURES as exc:
            if self._scheduler.is_latest(_MUNICIPALITIES_KEY, token):
                _logger.warning(
                    "Municipality list unavailable",
                    state_id=state_id,
                    error=str(exc) or "timeout",
                )
                self._fail("Could not load municipalities")
            return

        if not self._scheduler.is_latest(_MUNICIPALITIES_KEY, token):
            _logger.debug("Discarding stale municipality list", state_id=state_id)
            return
        self._municipalities = tuple(
            item for item in municipalities if item.state_id == state_id
        )
        self._state.status = "idle"

    async def choose_municipality(self, municipality_id: int) -> None:
        sel = self._selection
        if sel.mode != "location_first":
            _logger.info("Municipality choice ignored", reason="postal code workflow")
            return

        municipality = next(
            (item for item in self._municipalities if item.id == municipality_id),
            None,
        )
        if municipality is None:
            _logger.info(
                "Municipality rejected",
                municipality_id=municipality_id,
                state_id=sel.state_id,
            )
            return

        sel.municipality_id = municipality.id
        sel.settlement_id = None
        sel.settlement_custom = None
        sel.postal_code = None
        self._state.reset()
        self._state.state_name = self._state_name(sel.state_id)
        self._state.municipality_name = municipality.name
        self._postal_code_summary = ()
        self._settlement_search = ""
        self._forget_settlements()

        token = self._scheduler.issue(_SETTLEMENTS_KEY)
        self._state.status = "loading"
        await asyncio.gather(
            self._load_settlements(municipality.id, None, token),
            self._load_postal_code_summary(municipality.id),
        )

    def search_settlements(self, term: str) -> None:
        sel = self._selection
        if sel.mode != "location_first" or sel.municipality_id is None:
            _logger.info(
                "Settlement search ignored", municipality_id=sel.municipality_id
            )
            return

        municipality_id = sel.municipality_id
        self._settlement_search = (term or "").strip()
        search = self._settlement_search or None
        self._scheduler.schedule(
            _SETTLEMENTS_KEY,
            self._debounce_seconds,
            lambda token: self._load_settlements(municipality_id, search, token),
        )

    def choose_settlement(self, settlement_id: int) -> None:
        sel = self._selection
        settlement = self._known_settlements.get(settlement_id)
        if settlement is None or settlement.municipality_id != sel.municipality_id:
            _logger.info(
                "Settlement rejected",
                settlement_id=settlement_id,
                municipality_id=sel.municipality_id,
            )
            return
        self._select_settlement(settlement)

    def choose_postal_code(self, code: str) -> None:
        settlement = self._selected
        if settlement is None or len(settlement.postal_codes) <= 1:
            _logger.info("Postal code choice ignored", reason="nothing to choose")
            return

        cleaned = sanitize_postal_code(code)
        if cleaned not in settlement.postal_codes:
            _logger.info(
                "Postal code choice rejected",
                postal_code=cleaned,
                settlement_id=settlement.id,
            )
            return

        self._selection.postal_code = cleaned
        self._state.status = "resolved"

    def enable_custom_settlement(self, name: str) -> None:
        cleaned = (name or "").strip()
        if not (
            CUSTOM_SETTLEMENT_MIN_LENGTH
            <= len(cleaned)
            <= CUSTOM_SETTLEMENT_MAX_LENGTH
        ):
            _logger.info("Custom settlement name rejected", length=len(cleaned))
            return

        sel = self._selection
        sel.settlement_custom = cleaned
        sel.settlement_id = None
        self._selected = None
        self._state.postal_code_options = []
        self._state.status = "idle"

    def disable_custom_settlement(self) -> None:
        self._selection.settlement_custom = None
        self._state.status = "idle"

    async def submit_custom_settlement(
        self, settlement_type: str = "Colonia"
    ) -> Settlement | None:
        """Register the free-text settlement in the catalog and select it."""

        sel = self._selection
        if (
            not sel.settlement_custom
            or sel.municipality_id is None
            or not sel.postal_code
            or len(sel.postal_code) != POSTAL_CODE_LENGTH
        ):
            _logger.info("Custom settlement submission ignored", reason="incomplete")
            return None

        request = CustomSettlementRequest(
            postal_code=sel.postal_code,
            name=sel.settlement_custom,
            municipality_id=sel.municipality_id,
            settlement_type=settlement_type,
        )
        token = self._scheduler.issue(_CUSTOM_SETTLEMENT_KEY)
        self._state.status = "loading"
        try:
            created = await self._bounded(
                self._cache.gateway.create_custom_settlement(request)
            )
        except _LOOKUP_FAILURES as exc:
            if self._scheduler.is_latest(_CUSTOM_SETTLEMENT_KEY, token):
                _logger.warning(
                    "Custom settlement not saved",
                    name=request.name,
                    error=str(exc) or "timeout",
                )
                self._fail("Could not save the settlement")
            return None

        unchanged = (
            sel.settlement_custom == request.name
            and sel.municipality_id == request.municipality_id
            and sel.postal_code == request.postal_code
        )
        latest = self._scheduler.is_latest(_CUSTOM_SETTLEMENT_KEY, token)
        if not latest or not unchanged:
            _logger.debug(
                "Discarding stale custom settlement", settlement_id=created.id
            )
            return None

        if not created.postal_codes:
            created = created.model_copy(
                update={"postal_codes": frozenset({request.postal_code})}
            )
        self._remember_settlements((*self._settlements, created))
        self._select_settlement(created)
        _logger.info(
            "Custom settlement created",
            settlement_id=created.id,
            municipality_id=created.municipality_id,
        )
        return created

    def set_street_fields(
        self,
        street: str | None,
        exterior_number: str | None,
        interior_number: str | None = None,
    ) -> None:
        sel = self._selection
        sel.street = clamp(street, STREET_MAX_LENGTH)
        sel.exterior_number = clamp(exterior_number, EXTERIOR_NUMBER_MAX_LENGTH)
        sel.interior_number = clamp(interior_number, INTERIOR_NUMBER_MAX_LENGTH)

    # ---------------------------------------------------------------- helpers

    async def _lookup_postal_code(self, code: str, token: int) -> None:
        try:
            result = await self._bounded(self._cache.postal_code_lookup(code))
        except _LOOKUP_FAILURES as exc:
            if self._scheduler.is_latest(_POSTAL_CODE_KEY, token):
                _logger.warning(
                    "Postal code lookup failed",
                    postal_code=code,
                    error=str(exc) or "timeout",
                )
                self._fail("Could not look up the postal code")
            return

        if not self._scheduler.is_latest(_POSTAL_CODE_KEY, token):
            _logger.debug("Discarding stale postal code lookup", postal_code=code)
            return
        self._apply_lookup(code, result)

    def _apply_lookup(self, code: str, result: PostalCodeLookup | None) -> None:
        sel = self._selection
        settlements = result.settlements if result is not None else ()
        if result is None or not settlements:
            self._clear_resolved_location()
            self._state.status = "not_found"
            self._state.message = "Postal code not found"
            _logger.info("Postal code not found", postal_code=code)
            return

        sel.state_id = result.state.id
        sel.municipality_id = result.municipality.id
        sel.settlement_id = None
        sel.settlement_custom = None
        self._selected = None
        self._state.state_name = result.state.name
        self._state.municipality_name = result.municipality.name
        self._state.postal_code_options = []
        self._forget_settlements()
        self._remember_settlements(settlements)

        if len(settlements) == 1:
            self._select_settlement(settlements[0])
        else:
            self._state.status = "awaiting_settlement_choice"

        _logger.info(
            "Postal code resolved",
            postal_code=code,
            state_id=sel.state_id,
            municipality_id=sel.municipality_id,
            candidates=len(settlements),
        )

    async def _load_settlements(
        self, municipality_id: int, search: str | None, token: int
    ) -> None:
        try:
            settlements = await self._bounded(
                self._cache.settlements(
                    municipality_id, search, limit=self._page_limit
                )
            )
        except _LOOKUP_FAILURES as exc:
            if self._scheduler.is_latest(_SETTLEMENTS_KEY, token):
                _logger.warning(
                    "Settlement list unavailable",
                    municipality_id=municipality_id,
                    error=str(exc) or "timeout",
                )
                self._fail("Could not load settlements")
            return

        if not self._scheduler.is_latest(_SETTLEMENTS_KEY, token):
            _logger.debug(
                "Discarding stale settlement list", municipality_id=municipality_id
            )
            return
        self._remember_settlements(
            tuple(
                item for item in settlements if item.municipality_id == municipality_id
            )
        )
        if self._state.status == "loading":
            self._state.status = "idle"

    async def _load_postal_code_summary(self, municipality_id: int) -> None:
        try:
            summary = await self._bounded(self._cache.postal_codes(municipality_id))
        except _LOOKUP_FAILURES as exc:
            _logger.warning(
                "Postal code summary unavailable",
                municipality_id=municipality_id,
                error=str(exc) or "timeout",
            )
            return
        if self._selection.municipality_id == municipality_id:
            self._postal_code_summary = summary

    def _select_settlement(self, settlement: Settlement) -> None:
        sel = self._selection
        sel.settlement_id = settlement.id
        sel.settlement_custom = None
        self._selected = settlement
        self._state.warnings = []
        codes = sorted(settlement.postal_codes)

        if len(codes) == 1:
            sel.postal_code = codes[0]
            self._state.postal_code_options = []
        elif codes:
            self._state.postal_code_options = codes
            if sel.postal_code not in settlement.postal_codes:
                sel.postal_code = None
        else:
            self._state.postal_code_options = []
            warning = f"Settlement {settlement.id} has no postal codes in the catalog"
            self._state.warnings.append(warning)
            _logger.warning(
                "Catalog data anomaly",
                settlement_id=settlement.id,
                municipality_id=settlement.municipality_id,
                reason="settlement without postal codes",
            )

        self._state.message = None
        self._state.status = "resolved" if sel.postal_code else "idle"

    def _remember_settlements(self, settlements: tuple[Settlement, ...]) -> None:
        self._settlements = tuple(settlements)
        self._known_settlements.update((item.id, item) for item in settlements)

    def _forget_settlements(self) -> None:
        self._settlements = ()
        self._known_settlements = {}
        self._selected = None

    def _clear_resolved_location(self) -> None:
        sel = self._selection
        sel.state_id = None
        sel.municipality_id = None
        sel.settlement_id = None
        self._state.state_name = None
        self._state.municipality_name = None
        self._state.postal_code_options = []
        self._forget_settlements()

    def _state_name(self, state_id: int | None) -> str | None:
        states = self._cache.peek("states") or ()
        return next((item.name for item in states if item.id == state_id), None)

    def _fail(self, message: str) -> None:
        self._state.status = "error"
        self._state.message = message

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, self._lookup_timeout)
