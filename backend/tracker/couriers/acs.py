from __future__ import annotations

import re
from typing import Any

from tracker.couriers.base import (
    NumericCourierProvider,
    TrackingEvent,
    TrackingStatus,
    parse_event_time,
)
from tracker.couriers.errors import CourierApiError

TRACKING_ALIAS = "ACS_TrackingDetails"

# Checkpoint action fragments, first match wins. Anything unrecognised
# counts as still in transit.
CHECKPOINT_STATUS_MAP = (
    ("departure to destination", "in_transit"),
    ("arrival-departure from hub", "in_transit"),
    ("arrival to", "in_transit"),
    ("on delivery", "out_for_delivery"),
    ("delivery to consignee", "delivered"),
    ("delivery attempt failed", "failed"),
    ("returned", "returned"),
    ("picked up", "picked_up"),
    ("scan", "picked_up"),
)


def map_checkpoint_status(action: str) -> str:
    lowered = (action or "").lower()
    for fragment, status in CHECKPOINT_STATUS_MAP:
        if fragment in lowered:
            return status
    return "in_transit"


def parse_tracking_events(payload: dict[str, Any]) -> list[TrackingEvent]:
    rows = (
        payload.get("ACSOutputResponse", {})
        .get("ACSValueOutput", {})
        .get("ACSTableOutput", {})
        .get("Table_Data")
    )
    if not isinstance(rows, list):
        return []
    events = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        happened_at = parse_event_time(row.get("checkpoint_date_time"))
        if happened_at is None:
            continue
        action = row.get("checkpoint_action") or ""
        events.append(
            TrackingEvent(
                happened_at=happened_at,
                status=map_checkpoint_status(action),
                action=action,
                location=row.get("checkpoint_location") or None,
                description=row.get("checkpoint_notes") or None,
            )
        )
    events.sort(key=lambda event: event.happened_at)
    return events


class AcsProvider(NumericCourierProvider):
    id = "acs"
    label = "ACS"
    format_label = "ACS"
    shape = re.compile(r"(?:00)?\d{10,12}")
    blocked = re.compile(r"(?:(\d)\1+|1234567890)")

    def build_tracking_request(self, voucher: str) -> dict[str, Any]:
        creds = self.credentials
        return {
            "ACSAlias": TRACKING_ALIAS,
            "ACSInputParameters": {
                "Company_ID": creds.get("company_id", ""),
                "Company_Password": creds.get("company_password", ""),
                "User_ID": creds.get("user_id", ""),
                "User_Password": creds.get("user_password", ""),
                "Language": "GR",
                "Voucher_No": voucher,
            },
        }

    def fetch_tracking_status(self, voucher: str) -> TrackingStatus:
        if not self.tracking_configured:
            return self.not_configured_status()
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["ACSApiKey"] = self.api_key
        data = self.http_client.post_json(
            self.id,
            self.endpoint,
            json=self.build_tracking_request(voucher),
            headers=headers,
        )
        if not isinstance(data, dict):
            raise CourierApiError(self.id, "ACS API returned an unexpected payload")
        if data.get("ACSExecution_HasError") is True:
            raise CourierApiError(self.id, data.get("ACSExecutionErrorMessage") or "ACS API error")
        events = parse_tracking_events(data)
        if not events:
            return TrackingStatus(status="pending", message="No ACS checkpoints yet", raw=data)
        return TrackingStatus(status=events[-1].status, events=tuple(events), raw=data)
