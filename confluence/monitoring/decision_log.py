"""Decision log writer (JSONL) for evaluated auto-trade candidates."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson

from confluence.analysis.models import Signal


class DecisionLogger:
    """Write one record per evaluated candidate and per cycle outcome."""

    def __init__(self, log_path: str | Path) -> None:
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log_candidate(
        self,
        user_id: str,
        symbol: str,
        signal: Signal,
        spread_pct: float,
        consolidating: bool,
        ai_prob: float | None = None,
        external_ai_score: float | None = None,
        effective_ai_prob: float | None = None,
        rejected_by: str | None = None,
        stage: str = "pre_ai",
    ) -> None:
        record: dict[str, Any] = {
            "event": "candidate",
            "stage": stage,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": user_id,
            "symbol": symbol,
            "direction": signal.direction.value,
            "confidence": signal.confidence,
            "combined": signal.combined,
            "confluence": signal.confluence,
            "trading_mode": signal.trading_mode,
            "components": {
                name: {"direction": score.direction.value, "score": score.score}
                for name, score in signal.components.items()
            },
            "spread_pct": spread_pct,
            "consolidating": consolidating,
            "ai_prob": ai_prob,
            "external_ai_score": external_ai_score,
            "effective_ai_prob": effective_ai_prob,
            "rejected_by": rejected_by,
        }
        self._append(record)

    def log_outcome(self, user_id: str, outcome: dict[str, Any]) -> None:
        record: dict[str, Any] = {
            "event": "outcome",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": user_id,
            **outcome,
        }
        self._append(record)

    def _append(self, record: dict[str, Any]) -> None:
        with open(self.log_path, "ab") as handle:
            handle.write(orjson.dumps(record) + b"\n")
