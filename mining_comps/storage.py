from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

import pandas as pd

from mining_comps.config import Settings
from mining_comps.errors import PersistenceFailure
from mining_comps.facts import FACT_SPECS
from mining_comps.models import Company, CompanyRecord, CompanyUrl, ResolvedFact

logger = logging.getLogger(__name__)


class CompanyStore(Protocol):
    """Storage contract for company records, keyed by ticker."""

    def upsert(
        self, company: Company, facts: Mapping[str, ResolvedFact], now: Optional[datetime] = None
    ) -> CompanyRecord: ...

    def get(self, ticker: str) -> Optional[CompanyRecord]: ...

    def load(self, tickers: Optional[Iterable[str]] = None, limit: Optional[int] = None) -> List[CompanyRecord]: ...

    def export_csv(self, destination: Path) -> int: ...

    def get_urls(self, ticker: str) -> Dict[str, CompanyUrl]: ...

    def save_urls(
        self, ticker: str, urls: Mapping[str, str], now: Optional[datetime] = None
    ) -> Dict[str, CompanyUrl]: ...


def merge_facts(existing: Mapping[str, ResolvedFact], new: Mapping[str, ResolvedFact]) -> Dict[str, ResolvedFact]:
    """Overlay `new` on `existing`, except facts nobody reported this run."""
    merged = dict(existing)
    for key, fact in new.items():
        if fact.has_data or key not in merged:
            merged[key] = fact
    return merged


def _merge_record(
    existing: Optional[CompanyRecord], company: Company, facts: Mapping[str, ResolvedFact], now: datetime
) -> CompanyRecord:
    return CompanyRecord(
        ticker=company.ticker,
        name=company.name,
        name_alt=company.name_alt,
        news_link=company.news_link or (existing.news_link if existing else None),
        facts=merge_facts(existing.facts if existing else {}, facts),
        created_at=existing.created_at if existing else now,
        last_updated=now,
    )


def flatten_record(record: CompanyRecord) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "ticker": record.ticker,
        "name": record.name,
        "name_alt": record.name_alt,
        "news_link": record.news_link,
        "created_at": record.created_at.isoformat(),
        "last_updated": record.last_updated.isoformat(),
    }
    for key, fact in record.facts.items():
        row[key] = fact.value if fact.has_data else None
        row[f"{key}_currency"] = fact.currency
        row[f"{key}_flagged"] = fact.flagged
        row[f"{key}_sources"] = ",".join(fact.contributing_sources)
    return row


def _write_csv(records: List[CompanyRecord], destination: Path) -> int:
    destination.parent.mkdir(parents=True, exist_ok=True)
    if not records:
        logger.warning("No company records stored. Nothing to export.")
        return 0
    df = pd.DataFrame([flatten_record(r) for r in records])
    df.to_csv(destination, index=False)
    logger.info("Exported %s rows to %s", len(df), destination)
    return len(df)


_BASE_COLUMNS = {
    "ticker": "TEXT PRIMARY KEY",
    "name": "TEXT NOT NULL",
    "name_alt": "TEXT",
    "news_link": "TEXT",
    "created_at": "TEXT NOT NULL",
    "last_updated": "TEXT NOT NULL",
}

_FACT_COLUMNS = {
    "": "REAL",
    "_currency": "TEXT",
    "_flagged": "INTEGER",
    "_sources": "TEXT",
    "_variance": "REAL",
    "_relative_variance": "REAL",
    "_updated": "TEXT",
}

_URLS_DDL = (
    "CREATE TABLE IF NOT EXISTS company_urls ("
    "ticker TEXT NOT NULL, url_type TEXT NOT NULL, url TEXT NOT NULL, last_checked TEXT NOT NULL, "
    "PRIMARY KEY (ticker, url_type))"
)


class SqliteCompanyStore:
    """One `companies` row per ticker, one column group per fact."""

    def __init__(self, path: Path, fact_keys: Optional[Iterable[str]] = None) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.fact_keys = list(fact_keys or FACT_SPECS.keys())
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _columns(self) -> Dict[str, str]:
        columns = dict(_BASE_COLUMNS)
        for key in self.fact_keys:
            for suffix, kind in _FACT_COLUMNS.items():
                columns[f"{key}{suffix}"] = kind
        return columns

    def _ensure_schema(self) -> None:
        columns = self._columns()
        try:
            with closing(self._connect()) as conn, conn:
                ddl = ", ".join(f"{name} {kind}" for name, kind in columns.items())
                conn.execute(f"CREATE TABLE IF NOT EXISTS companies ({ddl})")
                conn.execute(_URLS_DDL)
                present = {row["name"] for row in conn.execute("PRAGMA table_info(companies)")}
                for name, kind in columns.items():
                    if name not in present:
                        logger.info("Adding column %s to companies table", name)
                        conn.execute(f"ALTER TABLE companies ADD COLUMN {name} {kind.replace('PRIMARY KEY', '')}")
        except sqlite3.Error as exc:
            raise PersistenceFailure("*", f"schema setup failed for {self.path}: {exc}") from exc

    def _to_row(self, record: CompanyRecord) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "ticker": record.ticker,
            "name": record.name,
            "name_alt": record.name_alt,
            "news_link": record.news_link,
            "created_at": record.created_at.isoformat(),
            "last_updated": record.last_updated.isoformat(),
        }
        for key, fact in record.facts.items():
            if key not in self.fact_keys:
                continue
            row[key] = fact.value
            row[f"{key}_currency"] = fact.currency
            row[f"{key}_flagged"] = int(fact.flagged)
            row[f"{key}_sources"] = json.dumps(fact.contributing_sources)
            row[f"{key}_variance"] = fact.variance
            row[f"{key}_relative_variance"] = fact.relative_variance
            row[f"{key}_updated"] = fact.timestamp.isoformat()
        return row

    def _from_row(self, row: sqlite3.Row) -> CompanyRecord:
        facts: Dict[str, ResolvedFact] = {}
        for key in self.fact_keys:
            updated = row[f"{key}_updated"]
            if updated is None:
                continue
            facts[key] = ResolvedFact(
                key=key,
                value=row[key] or 0.0,
                currency=row[f"{key}_currency"],
                contributing_sources=json.loads(row[f"{key}_sources"] or "[]"),
                variance=row[f"{key}_variance"] or 0.0,
                relative_variance=row[f"{key}_relative_variance"] or 0.0,
                flagged=bool(row[f"{key}_flagged"]),
                timestamp=updated,
            )
        return CompanyRecord(
            ticker=row["ticker"],
            name=row["name"],
            name_alt=row["name_alt"],
            news_link=row["news_link"],
            facts=facts,
            created_at=row["created_at"],
            last_updated=row["last_updated"],
        )

    def get(self, ticker: str) -> Optional[CompanyRecord]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM companies WHERE ticker = ?", (ticker.upper(),)).fetchone()
        return self._from_row(row) if row else None

    def upsert(
        self, company: Company, facts: Mapping[str, ResolvedFact], now: Optional[datetime] = None
    ) -> CompanyRecord:
        now = now or datetime.now(timezone.utc)
        try:
            record = _merge_record(self.get(company.ticker), company, facts, now)
            row = self._to_row(record)
            names = ", ".join(row)
            placeholders = ", ".join("?" for _ in row)
            with closing(self._connect()) as conn, conn:
                conn.execute(f"INSERT OR REPLACE INTO companies ({names}) VALUES ({placeholders})", list(row.values()))
        except sqlite3.Error as exc:
            raise PersistenceFailure(company.ticker, str(exc)) from exc
        logger.info("Upserted %s (%s facts) into %s", company.ticker, len(facts), self.path)
        return record

    def load(self, tickers: Optional[Iterable[str]] = None, limit: Optional[int] = None) -> List[CompanyRecord]:
        sql = "SELECT * FROM companies"
        params: List[Any] = []
        wanted = [t.upper() for t in tickers] if tickers else []
        if wanted:
            sql += f" WHERE ticker IN ({', '.join('?' for _ in wanted)})"
            params.extend(wanted)
        sql += " ORDER BY ticker"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))
        with closing(self._connect()) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._from_row(row) for row in rows]

    def export_csv(self, destination: Path) -> int:
        return _write_csv(self.load(), destination)

    def get_urls(self, ticker: str) -> Dict[str, CompanyUrl]:
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute("SELECT * FROM company_urls WHERE ticker = ?", (ticker.upper(),)).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceFailure(ticker.upper(), f"reading URLs failed: {exc}") from exc
        return {row["url_type"]: CompanyUrl(**dict(row)) for row in rows}

    def save_urls(
        self, ticker: str, urls: Mapping[str, str], now: Optional[datetime] = None
    ) -> Dict[str, CompanyUrl]:
        entries = _url_entries(ticker, urls, now)
        try:
            with closing(self._connect()) as conn, conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO company_urls (ticker, url_type, url, last_checked) VALUES (?, ?, ?, ?)",
                    [(e.ticker, e.url_type, e.url, e.last_checked.isoformat()) for e in entries.values()],
                )
        except sqlite3.Error as exc:
            raise PersistenceFailure(ticker.upper(), str(exc)) from exc
        logger.info("Saved %s URLs for %s", len(entries), ticker.upper())
        return entries


class JsonCompanyStore:
    """One JSON document per ticker, merged non-destructively on every write."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self.urls_directory = directory / "urls"

    def _path(self, ticker: str) -> Path:
        return self.directory / f"{ticker.upper()}.json"

    def _read(self, path: Path) -> Optional[CompanyRecord]:
        try:
            return CompanyRecord.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None
        except Exception as exc:  # noqa: BLE001
            logger.warning("Company document unreadable at %s, ignoring: %s", path, exc)
            return None

    def get(self, ticker: str) -> Optional[CompanyRecord]:
        return self._read(self._path(ticker))

    def upsert(
        self, company: Company, facts: Mapping[str, ResolvedFact], now: Optional[datetime] = None
    ) -> CompanyRecord:
        now = now or datetime.now(timezone.utc)
        record = _merge_record(self.get(company.ticker), company, facts, now)
        path = self._path(company.ticker)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp.write_text(json.dumps(record.model_dump(), indent=2, default=_json_default), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise PersistenceFailure(company.ticker, str(exc)) from exc
        logger.info("Wrote %s (%s facts) to %s", company.ticker, len(facts), path)
        return record

    def load(self, tickers: Optional[Iterable[str]] = None, limit: Optional[int] = None) -> List[CompanyRecord]:
        if tickers:
            paths = [self._path(t) for t in tickers]
        else:
            paths = sorted(self.directory.glob("*.json"))
        records = [r for r in (self._read(p) for p in paths) if r is not None]
        records.sort(key=lambda r: r.ticker)
        return records[:limit] if limit else records

    def export_csv(self, destination: Path) -> int:
        return _write_csv(self.load(), destination)

    def get_urls(self, ticker: str) -> Dict[str, CompanyUrl]:
        path = self.urls_directory / f"{ticker.upper()}.json"
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("URL document unreadable at %s, ignoring: %s", path, exc)
            return {}
        return {kind: CompanyUrl.model_validate(entry) for kind, entry in raw.items()}

    def save_urls(
        self, ticker: str, urls: Mapping[str, str], now: Optional[datetime] = None
    ) -> Dict[str, CompanyUrl]:
        merged = self.get_urls(ticker)
        merged.update(_url_entries(ticker, urls, now))
        path = self.urls_directory / f"{ticker.upper()}.json"
        tmp = path.with_suffix(".json.tmp")
        try:
            self.urls_directory.mkdir(parents=True, exist_ok=True)
            payload = {kind: entry.model_dump(mode="json") for kind, entry in merged.items()}
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise PersistenceFailure(ticker.upper(), str(exc)) from exc
        logger.info("Saved %s URLs for %s to %s", len(urls), ticker.upper(), path)
        return merged


def _url_entries(ticker: str, urls: Mapping[str, str], now: Optional[datetime]) -> Dict[str, CompanyUrl]:
    checked = now or datetime.now(timezone.utc)
    return {
        kind: CompanyUrl(ticker=ticker.upper(), url_type=kind, url=url, last_checked=checked)
        for kind, url in urls.items()
        if url
    }


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def build_store(settings: Settings) -> CompanyStore:
    """Create the configured store backend (sqlite or json)."""
    backend = settings.store_backend.lower()
    if backend == "json":
        return JsonCompanyStore(settings.json_dir)
    if backend != "sqlite":
        raise ValueError(f"Unknown STORE_BACKEND: {settings.store_backend}")
    return SqliteCompanyStore(settings.sqlite_path)
