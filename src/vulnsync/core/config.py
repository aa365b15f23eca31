# Core Module - Runtime Settings
#
# Settings are read from the process environment (``VULNSYNC_*``),
# after loading a ``.env`` file from the working directory if present.
# Component constructors still take explicit arguments; this module
# only gathers the values the CLI wires into them.

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

DEFAULT_NVD_URL = "https://services.nvd.nist.gov/rest/json/cves/2.0"
DEFAULT_KEV_URL = (
    "https://www.cisa.gov/sites/default/files/feeds/"
    "known_exploited_vulnerabilities.json"
)


@dataclass
class Settings:
    """Resolved vulnsync settings."""

    data_dir: Path
    threat_db: Path
    correlation_db: Path
    audit_dir: Path
    interval_seconds: int = 3600
    nvd_url: str = DEFAULT_NVD_URL
    kev_url: str = DEFAULT_KEV_URL
    nvd_days_back: int = 7
    nvd_page_size: int = 2000
    request_timeout: float = 30.0
    scan_limit: int = 10
    threat_window_days: int = 30
    fanout_workers: int = 4
    inventory_file: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for key, value in d.items():
            if isinstance(value, Path):
                d[key] = str(value)
        return d


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build ``Settings`` from ``.env`` and the environment.

    Existing environment variables win over values in the ``.env`` file.
    """
    load_dotenv(env_file, override=False)

    data_dir = Path(os.environ.get("VULNSYNC_DATA_DIR", "data"))
    inventory = os.environ.get("VULNSYNC_INVENTORY_FILE", "").strip()

    return Settings(
        data_dir=data_dir,
        threat_db=Path(os.environ.get("VULNSYNC_THREAT_DB", data_dir / "threats.db")),
        correlation_db=Path(
            os.environ.get("VULNSYNC_CORRELATION_DB", data_dir / "correlations.db")
        ),
        audit_dir=Path(os.environ.get("VULNSYNC_AUDIT_DIR", data_dir / "audit_logs")),
        interval_seconds=_env_int("VULNSYNC_INTERVAL_SECONDS", 3600),
        nvd_url=os.environ.get("VULNSYNC_NVD_URL", DEFAULT_NVD_URL),
        kev_url=os.environ.get("VULNSYNC_KEV_URL", DEFAULT_KEV_URL),
        nvd_days_back=_env_int("VULNSYNC_NVD_DAYS_BACK", 7),
        nvd_page_size=_env_int("VULNSYNC_NVD_PAGE_SIZE", 2000),
        request_timeout=_env_float("VULNSYNC_REQUEST_TIMEOUT", 30.0),
        scan_limit=_env_int("VULNSYNC_SCAN_LIMIT", 10),
        threat_window_days=_env_int("VULNSYNC_THREAT_WINDOW_DAYS", 30),
        fanout_workers=_env_int("VULNSYNC_FANOUT_WORKERS", 4),
        inventory_file=Path(inventory) if inventory else None,
    )
