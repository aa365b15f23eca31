# Intel Module - Software Inventory Collaborator
#
# The scanning pipeline that discovers installed software lives outside
# vulnsync. This module defines the read-only boundary the correlation
# engine consumes:
#
#   list_tenants()              -> every tenant to correlate
#   recent_scans(tenant, limit) -> newest-first device scans
#   asset_flags(tenant, device) -> exposure / criticality metadata
#
# Two implementations ship here: an in-memory inventory (tests and
# embedding callers) and a JSON-file inventory used by the CLI.

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import InventoryError, NormalizationError
from .models import to_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass
class SoftwareEntry:
    """One installed software package as reported by a device scan."""

    name: str
    version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DeviceScan:
    """A single inventory scan of one device."""

    device_id: str
    software: List[SoftwareEntry] = field(default_factory=list)
    scanned_at: str = field(default_factory=lambda: to_iso(utcnow()))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceScan":
        return cls(
            device_id=str(data["device_id"]),
            software=[
                SoftwareEntry(name=str(sw.get("name", "")), version=str(sw.get("version") or ""))
                for sw in data.get("software") or []
            ],
            scanned_at=to_iso(data.get("scanned_at")) or to_iso(utcnow()),
        )


@dataclass
class AssetFlags:
    """Tenant-owned metadata about a device that feeds the risk score."""

    internet_exposed: bool = False
    business_critical: bool = False


class SoftwareInventory(ABC):
    """Read-only view of every tenant's discovered software."""

    @abstractmethod
    def list_tenants(self) -> List[str]:
        """Return every known tenant id."""

    @abstractmethod
    def recent_scans(self, tenant_id: str, limit: int = 10) -> List[DeviceScan]:
        """Return up to ``limit`` scans for the tenant, newest first."""

    def asset_flags(self, tenant_id: str, device_id: str) -> AssetFlags:
        """Exposure/criticality metadata; neutral when none is known."""
        return AssetFlags()


class InMemoryInventory(SoftwareInventory):
    """Thread-safe in-memory inventory."""

    def __init__(self):
        self._lock = threading.RLock()
        self._scans: Dict[str, List[DeviceScan]] = {}
        self._flags: Dict[str, Dict[str, AssetFlags]] = {}

    def add_tenant(self, tenant_id: str) -> None:
        with self._lock:
            self._scans.setdefault(tenant_id, [])

    def add_scan(self, tenant_id: str, scan: DeviceScan) -> None:
        with self._lock:
            self._scans.setdefault(tenant_id, []).append(scan)

    def set_asset_flags(
        self,
        tenant_id: str,
        device_id: str,
        internet_exposed: bool = False,
        business_critical: bool = False,
    ) -> None:
        with self._lock:
            self._flags.setdefault(tenant_id, {})[device_id] = AssetFlags(
                internet_exposed=internet_exposed,
                business_critical=business_critical,
            )

    def list_tenants(self) -> List[str]:
        with self._lock:
            return sorted(self._scans)

    def recent_scans(self, tenant_id: str, limit: int = 10) -> List[DeviceScan]:
        with self._lock:
            scans = list(self._scans.get(tenant_id, []))
        scans.sort(key=lambda s: s.scanned_at, reverse=True)
        return scans[:limit]

    def asset_flags(self, tenant_id: str, device_id: str) -> AssetFlags:
        with self._lock:
            return self._flags.get(tenant_id, {}).get(device_id, AssetFlags())


class JSONFileInventory(InMemoryInventory):
    """Inventory loaded from a JSON export of the scanning pipeline.

    Expected layout::

        {
          "tenants": {
            "acme": {
              "scans": [
                {"device_id": "D1", "scanned_at": "2026-10-01T12:00:00Z",
                 "software": [{"name": "Google Chrome", "version": "118.0"}]}
              ],
              "assets": {
                "D1": {"internet_exposed": true, "business_critical": false}
              }
            }
          }
        }
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self.reload()

    def reload(self) -> None:
        """Re-read the export file, replacing the current contents.

        Raises:
            InventoryError: if the file is missing or not valid JSON.
        """
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise InventoryError(f"Cannot read inventory {self.path}: {exc}") from exc

        scans: Dict[str, List[DeviceScan]] = {}
        flags: Dict[str, Dict[str, AssetFlags]] = {}
        for tenant_id, tenant in (data.get("tenants") or {}).items():
            tenant_scans: List[DeviceScan] = []
            for raw in tenant.get("scans") or []:
                try:
                    tenant_scans.append(DeviceScan.from_dict(raw))
                except (KeyError, TypeError, ValueError, NormalizationError) as exc:
                    logger.warning("Skipping malformed scan for tenant %s: %s", tenant_id, exc)
            scans[tenant_id] = tenant_scans
            flags[tenant_id] = {
                device_id: AssetFlags(
                    internet_exposed=bool(meta.get("internet_exposed", False)),
                    business_critical=bool(meta.get("business_critical", False)),
                )
                for device_id, meta in (tenant.get("assets") or {}).items()
            }

        with self._lock:
            self._scans = scans
            self._flags = flags
        logger.info("Loaded inventory for %d tenants from %s", len(scans), self.path)


def load_inventory(path: Optional[Union[str, Path]]) -> SoftwareInventory:
    """JSON-file inventory if a path is given, else an empty in-memory one."""
    if path is None:
        return InMemoryInventory()
    return JSONFileInventory(path)
