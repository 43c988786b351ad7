"""Engine counters dataclass."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass
class EngineMetrics:
    evaluations: int = 0
    failures: int = 0
    fired: int = 0
    outside_window: int = 0
    not_met: int = 0
    quiet_hours_suppressed: int = 0
    cooldown_suppressed: int = 0
    hysteresis_suppressed: int = 0
    cap_suppressed: int = 0
    defects: int = 0
    delivery_errors: int = 0
    last_error: str | None = None
    last_run_ts: float | None = None

    def as_dict(self) -> dict[str, object]:
        return asdict(self)
