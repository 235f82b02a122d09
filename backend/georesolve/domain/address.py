from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Literal

from georesolve.schemas.catalog import Settlement


EntryMode = Literal["postal_code_first", "location_first"]
ENTRY_MODES: tuple[EntryMode, ...] = ("postal_code_first", "location_first")
ResolutionStatus = Literal[
    "idle",
    "loading",
    "resolved",
    "not_found",
    "error",
    "awaiting_settlement_choice",
]

POSTAL_CODE_LENGTH = 5
CUSTOM_SETTLEMENT_MIN_LENGTH = 2
CUSTOM_SETTLEMENT_MAX_LENGTH = 200
STREET_MAX_LENGTH = 300
EXTERIOR_NUMBER_MAX_LENGTH = 20
INTERIOR_NUMBER_MAX_LENGTH = 20

GEO_FIELDS = (
    "state_id",
    "municipality_id",
    "settlement_id",
    "settlement_custom",
    "postal_code",
)

_NON_DIGITS = re.compile(r"\D")


@dataclass
class AddressSelection:
    """Canonical address aggregate for one form session."""

    mode: EntryMode = "postal_code_first"
    state_id: int | None = None
    municipality_id: int | None = None
    settlement_id: int | None = None
    settlement_custom: str | None = None
    postal_code: str | None = None
    street: str = ""
    exterior_number: str = ""
    interior_number: str = ""

    def clear_geo(self) -> None:
        for name in GEO_FIELDS:
            setattr(self, name, None)

    def copy(self) -> "AddressSelection":
        return replace(self)

    def to_payload(self, prefix: str = "") -> dict[str, Any]:
        """Flatten the selection into the owning form's save payload."""

        return {
            f"{prefix}{item.name}": getattr(self, item.name)
            for item in fields(self)
            if item.name != "mode"
        }


@dataclass(frozen=True, slots=True)
class AddressSnapshot:
    """Read-only view handed to the owning form after every operation."""

    selection: AddressSelection
    status: ResolutionStatus
    candidates: tuple[Settlement, ...] = ()
    postal_code_options: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    message: str | None = None
    state_name: str | None = None
    municipality_name: str | None = None


@dataclass(slots=True)
class ResolutionState:
    """Resolver bookkeeping that sits next to the selection."""

    status: ResolutionStatus = "idle"
    postal_code_options: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    message: str | None = None
    state_name: str | None = None
    municipality_name: str | None = None

    def reset(self) -> None:
        self.status = "idle"
        self.postal_code_options = []
        self.warnings = []
        self.message = None
        self.state_name = None
        self.municipality_name = None


def sanitize_postal_code(raw: str | None) -> str:
    """Keep digits only, truncated to a full postal code."""

    if not raw:
        return ""
    return _NON_DIGITS.sub("", raw)[:POSTAL_CODE_LENGTH]


def clamp(value: str | None, limit: int) -> str:
    if not value:
        return ""
    return value.strip()[:limit]
