from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Final, List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    """Central configuration driven by environment variables."""

    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    dashboard_api_base_url: str | None = os.getenv("API_BASE_URL")

    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "15"))
    source_timeout_seconds: float = float(os.getenv("SOURCE_TIMEOUT_SECONDS", "45"))
    max_retries: int = int(os.getenv("MAX_RETRIES", "3"))
    retry_base_delay_seconds: float = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "5"))
    max_concurrency: int = int(os.getenv("MAX_CONCURRENCY", "3"))
    delay_between_tickers_seconds: float = float(os.getenv("DELAY_BETWEEN_TICKERS_SECONDS", "0"))

    data_dir: Path = field(default_factory=lambda: Path(os.getenv("DATA_DIR", "./data")))
    companies_csv_raw: str | None = os.getenv("COMPANIES_CSV")
    store_backend: str = os.getenv("STORE_BACKEND", "sqlite")
    sqlite_filename: str = os.getenv("SQLITE_FILENAME", "mining_companies.db")
    json_dirname: str = os.getenv("JSON_DIRNAME", "companies")
    provenance_filename: str = os.getenv("PROVENANCE_LOG", "verification_log.txt")

    sources_raw: str = os.getenv("SOURCES", "yahoo_finance,tradingview")
    alpha_vantage_key: str | None = os.getenv("ALPHA_VANTAGE_KEY")
    fmp_api_key: str | None = os.getenv("FMP_API_KEY")

    usd_cad_rate: float = float(os.getenv("USD_CAD_RATE", "1.35"))
    aud_cad_rate: float = float(os.getenv("AUD_CAD_RATE", "0.90"))
    gbp_cad_rate: float = float(os.getenv("GBP_CAD_RATE", "1.72"))
    live_fx: bool = field(default_factory=lambda: _env_bool("LIVE_FX"))
    fx_cache_ttl_seconds: int = int(os.getenv("FX_CACHE_TTL_SECONDS", "3600"))

    listing_cache_ttl_seconds: int = int(os.getenv("LISTING_CACHE_TTL_SECONDS", "900"))
    symbol_allowlist_raw: str | None = os.getenv("SYMBOL_ALLOWLIST")

    manual_entry: bool = field(default_factory=lambda: _env_bool("MANUAL_ENTRY"))
    manual_timeout_seconds: float = float(os.getenv("MANUAL_TIMEOUT_SECONDS", "60"))
    silver_gold_ratio: float = float(os.getenv("SILVER_GOLD_RATIO", "80"))
    url_max_age_days: float = float(os.getenv("URL_MAX_AGE_DAYS", "7"))

    def ensure_paths(self) -> None:
        """Create expected directories if they do not exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "export").mkdir(parents=True, exist_ok=True)

    @property
    def companies_csv(self) -> Path:
        if self.companies_csv_raw:
            return Path(self.companies_csv_raw)
        return self.data_dir / "companies.csv"

    @property
    def sqlite_path(self) -> Path:
        return self.data_dir / self.sqlite_filename

    @property
    def json_dir(self) -> Path:
        return self.data_dir / self.json_dirname

    @property
    def provenance_path(self) -> Path:
        return self.data_dir / self.provenance_filename

    @property
    def resolved_api_base_url(self) -> str:
        if self.dashboard_api_base_url:
            return self.dashboard_api_base_url.rstrip("/")
        return f"http://{self.api_host}:{self.api_port}"

    @property
    def enabled_sources(self) -> List[str]:
        return [token.strip().lower() for token in self.sources_raw.split(",") if token.strip()]

    @property
    def rates_to_cad(self) -> Dict[str, float]:
        return {"CAD": 1.0, "USD": self.usd_cad_rate, "AUD": self.aud_cad_rate, "GBP": self.gbp_cad_rate}

    @property
    def symbol_allowlist(self) -> set[str]:
        if not self.symbol_allowlist_raw:
            return set()
        return {token.strip().upper() for token in self.symbol_allowlist_raw.split(",") if token.strip()}


# Singleton-style settings import
settings: Final[Settings] = Settings()
settings.ensure_paths()
