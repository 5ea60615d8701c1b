"""
Conversions between HH:MM:SS strings (as stored) and integer seconds past
midnight (as computed with).
"""


def hms_to_seconds(hms: str) -> int:
    """
    Convert HH:MM:SS (or HH:MM) to integer seconds past midnight.
    Raises ValueError on malformed input; stored times are never guessed.
    """
    parts = hms.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Malformed time '{hms}'")
    h, m = int(parts[0]), int(parts[1])
    s = int(parts[2]) if len(parts) == 3 else 0
    if not (0 <= m < 60 and 0 <= s < 60 and h >= 0):
        raise ValueError(f"Malformed time '{hms}'")
    return h * 3600 + m * 60 + s


def seconds_to_hms(seconds: int) -> str:
    h, rem = divmod(int(seconds), 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"
