from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class RsType(IntEnum):
    ENGINE = 0
    COACH = 1
    FREIGHT_WAGON = 2


class EngineSubType(IntEnum):
    ELECTRIC = 0
    DIESEL = 1
    STEAM = 2


@dataclass
class RollingStockModel:
    id: int
    name: str
    suffix: str = ""
    type: RsType = RsType.COACH
    sub_type: EngineSubType | None = None  # engines only
    max_speed_kmh: int = 120
    axles: int = 4
    length_m: float = 0.0

    @property
    def is_electric_only(self) -> bool:
        return self.type == RsType.ENGINE and self.sub_type == EngineSubType.ELECTRIC


@dataclass
class Owner:
    id: int
    name: str


@dataclass
class RollingStockPiece:
    id: int
    model: RollingStockModel
    number: int
    owner: Owner | None = None

    @property
    def display_name(self) -> str:
        """Model name, suffix and number, e.g. 'E656.023'."""
        return f"{self.model.name}{self.model.suffix}.{self.number:03d}"

    @property
    def is_engine(self) -> bool:
        return self.model.type == RsType.ENGINE
