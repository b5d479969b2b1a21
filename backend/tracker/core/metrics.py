# Prometheus counters for the tenancy and courier paths. Labels are
# kept low-cardinality: no tenant ids or vouchers in label values.

from prometheus_client import Counter


CACHE_HITS_TOTAL = Counter(
    "cache_hits_total",
    "Cache hits grouped by cache name",
    ["cache"],
)
CACHE_MISSES_TOTAL = Counter(
    "cache_misses_total",
    "Cache misses grouped by cache name",
    ["cache"],
)
CACHE_SETS_TOTAL = Counter(
    "cache_sets_total",
    "Cache writes grouped by cache name",
    ["cache"],
)

TENANT_RESOLUTIONS_TOTAL = Counter(
    "tenant_resolutions_total",
    "Tenant resolutions grouped by the step that produced the result",
    ["source"],
)

VOUCHER_RESOLUTIONS_TOTAL = Counter(
    "voucher_resolutions_total",
    "Voucher resolutions grouped by courier and outcome",
    ["courier", "outcome"],
)

COURIER_POLL_TOTAL = Counter(
    "courier_poll_total",
    "Courier status polls grouped by courier and outcome",
    ["courier", "outcome"],
)

RATE_LIMITED_TOTAL = Counter(
    "rate_limited_total",
    "Requests rejected by a rate limit bucket",
    ["bucket"],
)


def record_cache_hit(cache_name: str) -> None:
    CACHE_HITS_TOTAL.labels(cache=cache_name).inc()


def record_cache_miss(cache_name: str) -> None:
    CACHE_MISSES_TOTAL.labels(cache=cache_name).inc()


def record_cache_set(cache_name: str) -> None:
    CACHE_SETS_TOTAL.labels(cache=cache_name).inc()


def record_tenant_resolution(source: str | None) -> None:
    TENANT_RESOLUTIONS_TOTAL.labels(source=source or "none").inc()


def record_voucher_resolution(courier: str | None, outcome: str) -> None:
    VOUCHER_RESOLUTIONS_TOTAL.labels(courier=courier or "unknown", outcome=outcome).inc()


def record_courier_poll(courier: str, outcome: str) -> None:
    COURIER_POLL_TOTAL.labels(courier=courier, outcome=outcome).inc()


def record_rate_limited(bucket: str) -> None:
    RATE_LIMITED_TOTAL.labels(bucket=bucket).inc()
