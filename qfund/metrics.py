from __future__ import annotations

"""
Prometheus metrics for round settlement.

We expose counters and histograms covering:
- tally batches by outcome, seals
- finalizations (alpha outcome)
- claims and redemptions by result, with payout amount distributions
- transfer failures reported by the asset collaborators
- current lifecycle state per round

The module is dependency-light and can be mounted into any ASGI app via the
helper at the bottom.
"""


import time
from contextlib import contextmanager
from typing import Optional

from prometheus_client import (CONTENT_TYPE_LATEST, CollectorRegistry, Counter,
                               Gauge, Histogram, generate_latest)

# Use a dedicated registry so embedding apps can choose to merge or expose it directly.
REGISTRY = CollectorRegistry()

# ────────────────────────────────────────────────────────────────────────────────
# Label conventions
#   result (batch): "accepted" | "resubmitted" | "duplicate" | "inconsistent"
#                   | "out_of_range" | "sealed"
#   result (claim/redeem): "ok" | "conflict" | "rejected" | "transfer_failed"
#   kind: "claim" | "redeem"
# ────────────────────────────────────────────────────────────────────────────────

BATCHES = Counter(
    "qfund_tally_batches_total",
    "Tally batches submitted, by outcome.",
    labelnames=("result",),
    registry=REGISTRY,
)

SEALS = Counter(
    "qfund_tally_seals_total",
    "Tally commitments sealed.",
    registry=REGISTRY,
)

FINALIZATIONS = Counter(
    "qfund_round_finalizations_total",
    "Round finalization attempts by result.",
    labelnames=("result",),  # "ok" | "clamped" | "zero" | "failed"
    registry=REGISTRY,
)

CLAIMS = Counter(
    "qfund_claims_total",
    "Claim attempts by result.",
    labelnames=("result",),
    registry=REGISTRY,
)

REDEMPTIONS = Counter(
    "qfund_redemptions_total",
    "Redemption attempts by result.",
    labelnames=("result",),
    registry=REGISTRY,
)

TRANSFER_FAILURES = Counter(
    "qfund_transfer_failures_total",
    "Transfers refused by the external asset collaborator.",
    labelnames=("kind",),
    registry=REGISTRY,
)

_AMOUNT_BUCKETS = (
    1,
    10,
    100,
    1_000,
    10_000,
    100_000,
    1_000_000,
    10_000_000,
    100_000_000,
    1_000_000_000,
    float("inf"),
)

CLAIM_AMOUNT_UNITS = Histogram(
    "qfund_claim_amount_units",
    "Distribution of claimed amounts (smallest settlement units).",
    buckets=_AMOUNT_BUCKETS,
    registry=REGISTRY,
)

REDEMPTION_AMOUNT_UNITS = Histogram(
    "qfund_redemption_amount_units",
    "Distribution of redeemed amounts (smallest settlement units).",
    buckets=_AMOUNT_BUCKETS,
    registry=REGISTRY,
)

FINALIZE_SECONDS = Histogram(
    "qfund_finalize_seconds",
    "Time spent computing alpha and freezing a round.",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
    registry=REGISTRY,
)

ROUND_STATE = Gauge(
    "qfund_round_state",
    "Lifecycle state ordinal per round (0=collecting .. 3=disbursing).",
    labelnames=("round",),
    registry=REGISTRY,
)

# ────────────────────────────────────────────────────────────────────────────────
# Recording helpers
# ────────────────────────────────────────────────────────────────────────────────


def record_batch(result: str) -> None:
    BATCHES.labels(result=result).inc()


def record_seal() -> None:
    SEALS.inc()


def record_finalize(result: str) -> None:
    FINALIZATIONS.labels(result=result).inc()


def record_claim(result: str, amount: int = 0) -> None:
    CLAIMS.labels(result=result).inc()
    if result == "ok" and amount >= 0:
        CLAIM_AMOUNT_UNITS.observe(float(amount))


def record_redemption(result: str, amount: int = 0) -> None:
    REDEMPTIONS.labels(result=result).inc()
    if result == "ok" and amount >= 0:
        REDEMPTION_AMOUNT_UNITS.observe(float(amount))


def record_transfer_failure(kind: str) -> None:
    TRANSFER_FAILURES.labels(kind=kind).inc()


def set_round_state(round_id: str, ordinal: int) -> None:
    ROUND_STATE.labels(round=round_id).set(ordinal)


@contextmanager
def time_finalize():
    """Context manager to observe finalize latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        FINALIZE_SECONDS.observe(time.perf_counter() - start)


# ────────────────────────────────────────────────────────────────────────────────
# ASGI mounting helper
# ────────────────────────────────────────────────────────────────────────────────


def make_prometheus_asgi_app(registry: Optional[CollectorRegistry] = None):
    """
    Return a minimal ASGI app that serves Prometheus metrics at '/'.
    No external web framework required.
    """
    reg = registry or REGISTRY

    async def app(scope, receive, send):  # type: ignore[override]
        if scope["type"] != "http" or (scope.get("path") or "/") != "/":
            await send({"type": "http.response.start", "status": 404, "headers": []})
            await send({"type": "http.response.body", "body": b"Not Found"})
            return
        payload = generate_latest(reg)
        headers = [
            (b"content-type", CONTENT_TYPE_LATEST.encode("ascii")),
            (b"cache-control", b"no-cache, no-store, must-revalidate"),
        ]
        await send({"type": "http.response.start", "status": 200, "headers": headers})
        await send({"type": "http.response.body", "body": payload})

    return app


__all__ = [
    "REGISTRY",
    "BATCHES",
    "SEALS",
    "FINALIZATIONS",
    "CLAIMS",
    "REDEMPTIONS",
    "TRANSFER_FAILURES",
    "CLAIM_AMOUNT_UNITS",
    "REDEMPTION_AMOUNT_UNITS",
    "FINALIZE_SECONDS",
    "ROUND_STATE",
    "record_batch",
    "record_seal",
    "record_finalize",
    "record_claim",
    "record_redemption",
    "record_transfer_failure",
    "set_round_state",
    "time_finalize",
    "make_prometheus_asgi_app",
]
