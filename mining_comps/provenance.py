from __future__ import annotations

import logging
import math
import threading
from pathlib import Path
from typing import Sequence

from mining_comps.models import FactSpec, Reading, ResolvedFact

logger = logging.getLogger(__name__)


def _fmt(value: float) -> str:
    if not math.isfinite(value):
        return str(value)
    return f"{value:.6g}"


def format_entry(ticker: str, spec: FactSpec, readings: Sequence[Reading], resolved: ResolvedFact) -> str:
    """One audit line: when, which ticker/fact, what each source said, and what was kept."""
    raw = ", ".join(
        f"{r.source}={'N/A' if r.value is None else _fmt(r.value)} {r.currency or '-'}" for r in readings
    )
    unit = spec.expected_currency or spec.unit
    line = (
        f"{resolved.timestamp.isoformat()} [{ticker}] {spec.key}: {raw or 'no sources'}; "
        f"variance={_fmt(resolved.variance)}; resolved={_fmt(resolved.value)} {unit}".rstrip()
    )
    if resolved.flagged:
        line += f"; FLAGGED (relative variance {_fmt(resolved.relative_variance)} > {spec.variance_threshold})"
    if not resolved.contributing_sources:
        line += "; NO DATA"
    return line


class ProvenanceLog:
    """Append-only text sink read by humans auditing scraper breakage."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, line: str) -> None:
        with self._lock, self.path.open("a", encoding="utf-8") as fh:
            fh.write(line.rstrip("\n") + "\n")

    def record(self, ticker: str, spec: FactSpec, readings: Sequence[Reading], resolved: ResolvedFact) -> str:
        line = format_entry(ticker, spec, readings, resolved)
        try:
            self.append(line)
        except OSError as exc:
            logger.warning("Could not write provenance line to %s: %s", self.path, exc)
        return line
