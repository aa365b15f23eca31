# Intel Module - Product Matching
#
# Vendor-reported product strings ("microsoft office") and locally
# observed software names ("Office 365 Microsoft") rarely agree
# exactly. Two normalized names match when they are equal, or when at
# least two long tokens (> 2 chars) of one name each overlap, as
# substring either way, with some token of the other. A single shared
# generic word ("server", "client") is not enough.

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from .inventory import DeviceScan, SoftwareEntry
from .models import normalize_product_name

MIN_TOKEN_LENGTH = 3
MIN_SHARED_TOKENS = 2


def tokenize(name: str) -> List[str]:
    """Whitespace tokens of ``name`` longer than two characters.

    Repeats are kept, so "nginx nginx" (a CPE whose vendor and product
    coincide) shares two tokens with "nginx".
    """
    return [token for token in name.split() if len(token) >= MIN_TOKEN_LENGTH]


def _overlap_count(tokens: Iterable[str], others: List[str]) -> int:
    return sum(
        1 for token in tokens
        if any(token in other or other in token for other in others)
    )


def is_product_match(threat_product: str, inventory_product: str) -> bool:
    """Match predicate between two normalized product names."""
    if not threat_product or not inventory_product:
        return False
    if threat_product == inventory_product:
        return True

    threat_tokens = tokenize(threat_product)
    inventory_tokens = tokenize(inventory_product)
    if not threat_tokens or not inventory_tokens:
        return False

    return (
        _overlap_count(threat_tokens, inventory_tokens) >= MIN_SHARED_TOKENS
        or _overlap_count(inventory_tokens, threat_tokens) >= MIN_SHARED_TOKENS
    )


@dataclass
class InventoryIndex:
    """A tenant's software keyed by normalized name.

    ``products`` maps each normalized name to the devices running it;
    ``entries`` keeps the original (name, version) per device so
    matches can be reported as the software the tenant actually sees.
    """

    products: Dict[str, Set[str]] = field(default_factory=dict)
    entries: Dict[str, List[Tuple[str, SoftwareEntry]]] = field(default_factory=dict)
    devices: Set[str] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.products)


def build_inventory_index(scans: Iterable[DeviceScan]) -> InventoryIndex:
    """Index newest-first scans; each device contributes its newest scan only."""
    index = InventoryIndex()
    for scan in scans:
        if scan.device_id in index.devices:
            continue
        index.devices.add(scan.device_id)
        for software in scan.software:
            key = normalize_product_name(software.name)
            if not key:
                continue
            index.products.setdefault(key, set()).add(scan.device_id)
            index.entries.setdefault(key, []).append((scan.device_id, software))
    return index
