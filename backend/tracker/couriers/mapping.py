"""
Detect which courier an upstream source claims a voucher belongs to,
from WooCommerce meta keys or free-text order notes.
"""

from __future__ import annotations

import re
from typing import Optional

VOUCHER_META_KEYS: dict[str, tuple[str, ...]] = {
    "acs": (
        "_acs_voucher",
        "acs_voucher",
        "acs_tracking",
        "_appsbyb_acs_courier_gr_no_pod",
        "_appsbyb_acs_courier_gr_no_pod_pieces",
    ),
    "geniki": (
        "_geniki_voucher",
        "geniki_voucher",
        "geniki_tracking",
        "_geniki_tracking",
        "gtx_voucher",
        "gtx_tracking",
        "_gtx_voucher",
        "_gtx_tracking",
        "taxidromiki_voucher",
        "taxidromiki_tracking",
    ),
    "elta": (
        "_elta_voucher",
        "elta_voucher",
        "elta_tracking",
        "_elta_tracking",
        "elta_reference",
        "_elta_reference",
        "hellenic_post_voucher",
        "hellenic_post_tracking",
    ),
    "speedex": (
        "obs_speedex_courier",
        "obs_speedex_courier_pieces",
    ),
    "generic": (
        "voucher_number",
        "tracking_number",
        "shipment_id",
        "_dmm_delivery_shipment_id",
        "courier",
        "shipping_courier",
        "courier_service",
        "courier_company",
        "shipping_provider",
        "delivery_service",
        "shipping_service",
        "transport_method",
    ),
}

_META_KEY_INDEX = {key: courier for courier, keys in VOUCHER_META_KEYS.items() for key in keys}

# Checked in order; the generic words only apply when no courier is named.
# "ΑCS" with a Greek capital alpha shows up in hand-typed notes.
NOTE_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("acs", re.compile(r"\b(?:ACS|ΑCS)\b", re.IGNORECASE)),
    ("geniki", re.compile(r"\b(?:GENIKI|GTX|TAXIDROMIKI)\b", re.IGNORECASE)),
    ("elta", re.compile(r"\b(?:ELTA|HELLENIC POST)\b", re.IGNORECASE)),
    ("speedex", re.compile(r"\bSPEEDEX\b", re.IGNORECASE)),
    ("generic", re.compile(r"\b(?:courier|tracking|shipment|voucher)\b", re.IGNORECASE)),
)


def detect_courier_from_meta_key(meta_key: Optional[str]) -> Optional[str]:
    if not meta_key:
        return None
    return _META_KEY_INDEX.get(meta_key)


def detect_courier_from_note(note: Optional[str]) -> Optional[str]:
    if not note:
        return None
    for courier_id, pattern in NOTE_PATTERNS:
        if pattern.search(note):
            return courier_id
    return None


def extract_meta_vouchers(meta: Optional[dict]) -> list[tuple[str, str, str]]:
    """
    Pull `(meta_key, courier_id, voucher)` triples out of order meta,
    in the order the keys appear.
    """
    found = []
    for key, value in (meta or {}).items():
        courier_id = detect_courier_from_meta_key(key)
        if courier_id is None or value is None:
            continue
        voucher = str(value).strip()
        if voucher:
            found.append((key, courier_id, voucher))
    return found
