"""
Voucher resolution: which courier does a raw tracking string belong to?

A courier named by the upstream source (id, label, meta key or order
note) is taken at its word. Otherwise providers are asked `looks_like`
in priority order and the first yes wins; the priority list is the only
tie-break between overlapping formats. Either way the chosen provider's
`validate` runs before the voucher is accepted. Nothing matching is a
rejection, never a silent fallback to the generic provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from tracker.core.config import settings
from tracker.core.metrics import record_voucher_resolution
from tracker.couriers.base import CourierProvider, OrderContext
from tracker.couriers.errors import VoucherFormatUnrecognized, VoucherRejected
from tracker.couriers.generic import GenericProvider
from tracker.couriers.mapping import detect_courier_from_meta_key, detect_courier_from_note
from tracker.couriers.registry import CourierProviderRegistry


logger = logging.getLogger(__name__)

UNRECOGNIZED_REASON = "Unrecognized voucher format"

MATCH_CLAIMED = "claimed"
MATCH_DETECTED = "detected"


@dataclass(frozen=True)
class CourierMatchResult:
    provider_id: Optional[str]
    normalized_voucher: Optional[str]
    valid: bool
    reason: str
    matched_by: Optional[str] = None

    @property
    def recognized(self) -> bool:
        return self.provider_id is not None

    def raise_for_rejection(self) -> "CourierMatchResult":
        if not self.recognized:
            raise VoucherFormatUnrecognized(self.reason)
        if not self.valid:
            raise VoucherRejected(self.reason, provider_id=self.provider_id)
        return self


def normalize_priority(priority: Optional[Iterable[str]]) -> list[str]:
    seen: list[str] = []
    for item in priority or ():
        courier_id = str(item).strip().lower()
        if courier_id and courier_id not in seen:
            seen.append(courier_id)
    return seen


class VoucherResolver:
    def __init__(
        self,
        registry: CourierProviderRegistry,
        *,
        priority: Optional[Iterable[str]] = None,
    ) -> None:
        self.registry = registry
        self.default_priority = normalize_priority(
            settings.COURIER_PRIORITY if priority is None else priority
        )

    def priority_for(self, tenant_priority: Optional[Iterable[str]] = None) -> list[str]:
        """
        The tenant's own ordering when it has one, else the deployment's.
        Ids with no registered provider are dropped.
        """
        order = normalize_priority(tenant_priority) or self.default_priority
        return [courier_id for courier_id in order if self.registry.has(courier_id)]

    def claimed_provider(self, claimed: Optional[str]) -> Optional[CourierProvider]:
        if not claimed or not str(claimed).strip():
            return None
        value = str(claimed).strip()
        lowered = value.lower()
        provider = self.registry.get(lowered)
        if provider is not None:
            return provider
        for candidate in self.registry.all():
            if candidate.label.lower() == lowered:
                return candidate
        courier_id = detect_courier_from_meta_key(value) or detect_courier_from_note(value)
        # Words like "tracking" or "courier" name no courier; let the scan decide.
        if courier_id == GenericProvider.id:
            return None
        return self.registry.get(courier_id)

    def detect(self, voucher: str, *, priority: Optional[Iterable[str]] = None) -> Optional[CourierProvider]:
        for courier_id in self.priority_for(priority):
            provider = self.registry.get(courier_id)
            if provider is not None and provider.looks_like(voucher):
                return provider
        return None

    def resolve(
        self,
        voucher: Optional[str],
        order: Optional[OrderContext] = None,
        *,
        claimed: Optional[str] = None,
        priority: Optional[Iterable[str]] = None,
    ) -> CourierMatchResult:
        raw = (voucher or "").strip()
        if not raw:
            return self._unrecognized()

        provider = self.claimed_provider(claimed)
        matched_by = MATCH_CLAIMED
        if provider is None:
            provider = self.detect(raw, priority=priority)
            matched_by = MATCH_DETECTED
        if provider is None:
            return self._unrecognized()

        normalized = provider.normalize(raw)
        valid, reason = provider.validate(normalized, order)
        result = CourierMatchResult(
            provider_id=provider.id,
            normalized_voucher=normalized,
            valid=valid,
            reason=reason,
            matched_by=matched_by,
        )
        record_voucher_resolution(provider.id, "accepted" if valid else "rejected")
        if not valid:
            logger.info(
                "voucher.rejected",
                extra={"courier_id": provider.id, "reason": reason, "matched_by": matched_by},
            )
        return result

    def build_payload(self, result: CourierMatchResult, base: dict[str, Any]) -> dict[str, Any]:
        result.raise_for_rejection()
        provider = self.registry.get(result.provider_id)
        return provider.build_api_payload({**base, "voucher": result.normalized_voucher})

    def _unrecognized(self) -> CourierMatchResult:
        record_voucher_resolution(None, "unrecognized")
        logger.info("voucher.unrecognized")
        return CourierMatchResult(
            provider_id=None,
            normalized_voucher=None,
            valid=False,
            reason=UNRECOGNIZED_REASON,
        )
