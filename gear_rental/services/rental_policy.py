from __future__ import annotations

import os
from dataclasses import dataclass


def _float_env(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be numeric, got {raw!r}") from exc


def _int_env(name: str, default: int) -> int:
    return int(_float_env(name, default))


@dataclass(frozen=True)
class RentalPolicy:
    pickup_window_minutes: int = 60
    grace_minutes: int = 10
    late_fee_rate: float = 0.25
    late_fee_scale: float = 100
    code_length: int = 6
    code_attempts: int = 10

    @property
    def late_fee_per_minute(self) -> float:
        return self.late_fee_rate * self.late_fee_scale

    @classmethod
    def from_env(cls) -> "RentalPolicy":
        return cls(
            pickup_window_minutes=_int_env("PICKUP_WINDOW_MINUTES", cls.pickup_window_minutes),
            grace_minutes=_int_env("RETURN_GRACE_MINUTES", cls.grace_minutes),
            late_fee_rate=_float_env("LATE_FEE_RATE", cls.late_fee_rate),
            late_fee_scale=_float_env("LATE_FEE_SCALE", cls.late_fee_scale),
            code_attempts=max(_int_env("PICKUP_CODE_ATTEMPTS", cls.code_attempts), 1),
        )
