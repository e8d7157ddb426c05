from __future__ import annotations

import asyncio
import logging
import queue
import sys
import threading
from typing import Callable, Iterable, Optional

import httpx

from mining_comps.facts import FACT_SPECS
from mining_comps.ingestion.base import SourceReport, build_report
from mining_comps.models import Company
from mining_comps.units import parse_abbreviated_number

logger = logging.getLogger(__name__)


def _read_stdin() -> str:
    return sys.stdin.readline()


def _echo(question: str) -> None:
    sys.stdout.write(question)
    sys.stdout.flush()


class ManualEntrySource:
    """Operator fallback: asks on the terminal for each fact, with a timeout per answer.

    Blank, unparseable or unanswered prompts become null readings.

    Input is read by a single daemon thread that lives as long as the source,
    so a prompt that times out leaves no blocked reader behind: the next line
    the operator types goes to the next question, and interpreter shutdown
    never waits on the terminal.
    """

    name = "manual"
    interactive = True

    def __init__(
        self,
        fact_keys: Optional[Iterable[str]] = None,
        read_line: Callable[[], str] = _read_stdin,
        write: Callable[[str], None] = _echo,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.fact_keys = list(fact_keys or ["stock_price", "market_cap"])
        self.read_line = read_line
        self.write = write
        self.timeout_seconds = timeout_seconds
        self._lock = asyncio.Lock()
        # Lines typed by the operator; None once input is closed.
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._reader: Optional[threading.Thread] = None
        self._closed = False

    def _read_forever(self) -> None:
        while True:
            try:
                line = self.read_line()
            except EOFError:
                line = ""
            if not line:
                self._lines.put(None)
                return
            self._lines.put(line)

    def _start_reader(self) -> None:
        if self._reader is None:
            self._reader = threading.Thread(target=self._read_forever, name="manual-entry-stdin", daemon=True)
            self._reader.start()

    def _drain(self) -> None:
        """Drop lines typed after an earlier prompt had already given up."""
        while True:
            try:
                line = self._lines.get_nowait()
            except queue.Empty:
                return
            if line is None:
                self._closed = True
                return
            logger.info("Discarding late manual answer %r", line.strip())

    async def _ask(self, question: str) -> Optional[str]:
        if self._closed:
            return None
        self._start_reader()
        self._drain()
        if self._closed:
            return None
        self.write(question)
        try:
            # The worker returns within the timeout, so no thread outlives the prompt.
            line = await asyncio.to_thread(self._lines.get, True, self.timeout_seconds)
        except queue.Empty:
            logger.warning("No manual answer within %ss for %r", self.timeout_seconds, question)
            return None
        if line is None:
            logger.warning("Manual input closed; skipping remaining prompts")
            self._closed = True
            return None
        return line.strip()

    async def fetch(self, client: httpx.AsyncClient, company: Company) -> SourceReport:
        values = {}
        # One operator, so tickers processed in parallel take turns.
        async with self._lock:
            for key in self.fact_keys:
                spec = FACT_SPECS[key]
                unit = spec.expected_currency or spec.unit
                answer = await self._ask(f"{company.ticker} {spec.label} ({unit}, blank to skip): ")
                values[key] = (parse_abbreviated_number(answer), spec.expected_currency)
        report = build_report(self.name, values)
        logger.info("Manual entry for %s: %s values", company.ticker, len(report))
        return report
