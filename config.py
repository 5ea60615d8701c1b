from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv
import os

load_dotenv()

BASE_DIR = Path(__file__).parent

# Data directory (gitignored)
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)

# Database (the session file the timetable is stored in)
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/timetable.db")

# Travel time
DEFAULT_TRAIN_SPEED_KMH: int = int(os.getenv("DEFAULT_TRAIN_SPEED_KMH", "120"))
MIN_TRAVEL_MINUTES: int = int(os.getenv("MIN_TRAVEL_MINUTES", "1"))

# Job editor: stops with 0 default dwell minutes become transits
AUTO_INSERT_TRANSIT: bool = os.getenv("AUTO_INSERT_TRANSIT", "true").lower() in ("1", "true", "yes")

# Background checkers
CHECKER_WORKERS: int = int(os.getenv("CHECKER_WORKERS", "1"))

# Keyed by JobCategory name. 0 minutes means transit.
DEFAULT_STOP_MINUTES: dict[str, int] = {
    "FREIGHT": 10,
    "LIS": 10,
    "POSTAL": 10,
    "REGIONAL": 2,
    "FAST_REGIONAL": 2,
    "LOCAL": 2,
    "INTERCITY": 0,
    "EXPRESS": 0,
    "DIRECT": 0,
    "HIGH_SPEED": 0,
}

CATEGORY_COLORS: dict[str, str] = {
    "FREIGHT": "#00FFFF",
    "LIS": "#0000FF",
    "POSTAL": "#808000",
    "REGIONAL": "#008000",
    "FAST_REGIONAL": "#005500",
    "LOCAL": "#00FF00",
    "INTERCITY": "#FFAA00",
    "EXPRESS": "#800080",
    "DIRECT": "#800000",
    "HIGH_SPEED": "#FF0000",
}


@dataclass(frozen=True)
class EngineSettings:
    """
    Configuration inputs for job path editing and the checkers.

    Built once by the host from the module defaults (or user preferences)
    and passed explicitly to every operation that needs it.
    """

    default_train_speed_kmh: int = DEFAULT_TRAIN_SPEED_KMH
    min_travel_minutes: int = MIN_TRAVEL_MINUTES
    auto_insert_transit: bool = AUTO_INSERT_TRANSIT
    default_stop_minutes: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_STOP_MINUTES))
    category_colors: dict[str, str] = field(default_factory=lambda: dict(CATEGORY_COLORS))

    def stop_minutes_for(self, category_name: str) -> int:
        return self.default_stop_minutes.get(category_name, 0)
