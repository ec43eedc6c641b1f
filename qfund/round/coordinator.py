from __future__ import annotations

"""
qfund.round.coordinator
=======================

Lifecycle owner for one funding round. The coordinator exclusively owns the
round's `TallyCommitment`, `ClaimLedger` and `RedemptionLedger`, and shares a
single `threading.RLock` with all three so every mutating operation on the
round is serialised.

    COLLECTING --seal--> SEALED --finalize--> FINALIZED --first claim--> DISBURSING

States only move forward. DISBURSING is terminal: the round never closes, and
anything left unclaimed stays claimable.

- COLLECTING: tally batches accepted; a tally hash may be published.
- SEALED:     commitment frozen; alpha not computed yet.
- FINALIZED:  budget and alpha frozen. A failed alpha computation leaves the
              round SEALED so the budget can be fixed out of band.
- DISBURSING: claims and redemptions.

Typical usage
-------------
    token = InMemoryLedger("voting-token")
    asset = InMemoryLedger("asset")
    rnd = RoundCoordinator(
        "round-1",
        registry=SimpleRecipientRegistry({0: "alice", 1: "bob"}),
        pool=token.account("round-1/pool"),
        token=token,
        underlying=asset.account("vendor/reserve"),
        config=RoundConfig(tree_depth=1),
    )
    rnd.accumulate_batch(0, [60, 250], [10, 20])
    rnd.seal(total_spent=310, total_spent_salt=0xABC)
    rnd.finalize(budget=400)
    amount = rnd.claim(0, "alice")
    rnd.redeem(0, "alice")
"""

from enum import IntEnum
import logging
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple

from qfund import metrics
from qfund.adapters.ledger import AccountingToken, SettlementAsset
from qfund.adapters.registry import RecipientRegistry
from qfund.config import RoundConfig
from qfund.economics.allocation import Alpha, allocation_table, compute_allocation, compute_alpha
from qfund.errors import (AlreadySealed, CommitmentMismatch, FundArithmeticError, InputError,
                          InsufficientBalance, WrongState)
from qfund.ledger.claims import ClaimLedger
from qfund.ledger.redemptions import RedemptionLedger
from qfund.qtypes.events import BatchAccepted, RoundEvent, RoundFinalized, TallySealed
from qfund.tally.commitment import TallyCommitment
from qfund.tally.records import TallyRecord

log = logging.getLogger(__name__)


class RoundState(IntEnum):
    COLLECTING = 0
    SEALED = 1
    FINALIZED = 2
    DISBURSING = 3


class RoundCoordinator:
    def __init__(
        self,
        round_id: str,
        *,
        registry: RecipientRegistry,
        pool: SettlementAsset,
        token: AccountingToken,
        underlying: SettlementAsset,
        config: Optional[RoundConfig] = None,
        pool_account: Optional[str] = None,
    ) -> None:
        self.config = config or RoundConfig()
        self.config.validate()
        self.round_id = round_id
        self._lock = RLock()
        self._pool = pool
        self._pool_account = pool_account or getattr(pool, "source", None)
        self._events: List[RoundEvent] = []
        self._subscribers: List[Callable[[RoundEvent], None]] = []

        self.commitment = TallyCommitment(self.config.tree_depth, round_id=round_id, lock=self._lock)
        self.claims = ClaimLedger(registry, pool, lock=self._lock, emit=self._emit, round_id=round_id)
        self.redemptions = RedemptionLedger(
            self.claims, token, underlying, lock=self._lock, emit=self._emit, round_id=round_id
        )

        self._state = RoundState.COLLECTING
        self._tally_hash: Optional[str] = None
        self._budget: Optional[int] = None
        self._alpha: Optional[Alpha] = None
        metrics.set_round_state(round_id, int(self._state))

    # --- state ---

    @property
    def state(self) -> RoundState:
        return self._state

    @property
    def alpha(self) -> Optional[Alpha]:
        return self._alpha

    @property
    def budget(self) -> Optional[int]:
        return self._budget

    @property
    def tally_hash(self) -> Optional[str]:
        return self._tally_hash

    def _advance(self, new: RoundState) -> None:
        if new <= self._state:
            raise WrongState(operation=f"advance:{new.name}", state=self._state.name)
        log.info("round: %s %s -> %s", self.round_id, self._state.name, new.name)
        self._state = new
        metrics.set_round_state(self.round_id, int(new))

    def _require(self, operation: str, *allowed: RoundState) -> None:
        if self._state not in allowed:
            raise WrongState(operation=operation, state=self._state.name, expected=[s.name for s in allowed])

    # --- events ---

    def _emit(self, event: RoundEvent) -> None:
        self._events.append(event)
        for fn in list(self._subscribers):
            try:
                fn(event)
            except Exception:
                log.exception("round: event subscriber failed round=%s event=%s",
                              self.round_id, type(event).__name__)

    def subscribe(self, fn: Callable[[RoundEvent], None]) -> None:
        self._subscribers.append(fn)

    def events(self) -> Tuple[RoundEvent, ...]:
        with self._lock:
            return tuple(self._events)

    # --- collecting ---

    def accumulate_batch(self, batch_index_start: int, per_recipient_spent, per_recipient_quadratic_votes) -> bool:
        with self._lock:
            if self._state is not RoundState.COLLECTING:
                metrics.record_batch("sealed")
                raise AlreadySealed("round no longer accepts tally batches",
                                    details={"round": self.round_id, "state": self._state.name})
            applied = self.commitment.accumulate_batch(
                batch_index_start, per_recipient_spent, per_recipient_quadratic_votes
            )
            if applied:
                self._emit(BatchAccepted(round_id=self.round_id, start_index=batch_index_start,
                                         size=len(per_recipient_spent)))
            return applied

    def publish_tally_hash(self, digest: str) -> None:
        """Record the commitment digest the upstream tallier published; seal() must match it."""
        s = (digest or "").strip().lower().removeprefix("0x")
        if not s or any(c not in "0123456789abcdef" for c in s):
            raise InputError("tally hash must be a non-empty hex string", details={"value": digest})
        with self._lock:
            self._require("publish_tally_hash", RoundState.COLLECTING)
            self._tally_hash = s
            log.info("round: tally hash published round=%s hash=%s", self.round_id, s[:16])

    def seal(self, total_spent: int, total_spent_salt: int) -> str:
        with self._lock:
            if self._state is not RoundState.COLLECTING:
                raise AlreadySealed("round tally already sealed",
                                    details={"round": self.round_id, "state": self._state.name})
            if self.config.require_tally_hash and self._tally_hash is None:
                raise WrongState(operation="seal", state=self._state.name,
                                 message="a tally hash must be published before sealing")
            digest = self.commitment.seal(total_spent, total_spent_salt, expected_digest=self._tally_hash)
            self._advance(RoundState.SEALED)
            self._emit(TallySealed(round_id=self.round_id, total_spent=total_spent, digest=digest))
            return digest

    def ingest_tally(self, record: TallyRecord, batch_size: Optional[int] = None) -> str:
        """Feed a whole tally document in batches and seal it. Returns the digest."""
        size = batch_size or self.config.batch_size
        padded = record.pad_to(self.config.tree_depth)
        for batch in padded.batches(size):
            self.accumulate_batch(batch.start, batch.spent, batch.tally)
        return self.seal(padded.total_spent, padded.salt)

    # --- finalize ---

    def _resolve_budget(self, budget: Optional[int]) -> int:
        if self._pool_account is None:
            if budget is None:
                raise InputError("no budget given and the pool account is unknown",
                                 details={"round": self.round_id})
            return budget
        available = self._pool.balance_of(self._pool_account)
        if budget is None:
            return available
        # Alpha over funds the pool does not hold would leave some claims unpayable.
        if budget > available:
            metrics.record_finalize("failed")
            raise InsufficientBalance(account=self._pool_account, required=budget, available=available,
                                      message="budget exceeds the pool balance")
        return budget

    def finalize(self, budget: Optional[int] = None, total_quadratic_votes: Optional[int] = None) -> Alpha:
        """
        Freeze budget and alpha. `budget` defaults to the pool balance;
        `total_quadratic_votes` defaults to sum(tally[i]**2) over the sealed arena.
        """
        cfg = self.config
        with self._lock:
            self._require("finalize", RoundState.SEALED)
            c = self.commitment
            resolved = self._resolve_budget(budget)
            derived_votes = c.total_quadratic_votes()
            votes = derived_votes if total_quadratic_votes is None else total_quadratic_votes

            if cfg.verify_totals:
                if c.sum_spent() != c.total_spent:
                    metrics.record_finalize("failed")
                    raise CommitmentMismatch(
                        "per-recipient spent does not add up to total spent",
                        details={"sum_spent": c.sum_spent(), "total_spent": c.total_spent},
                    )
                if votes != derived_votes:
                    metrics.record_finalize("failed")
                    raise CommitmentMismatch(
                        "declared quadratic votes differ from the sealed tally",
                        details={"declared": votes, "derived": derived_votes},
                    )

            with metrics.time_finalize():
                try:
                    alpha = compute_alpha(
                        resolved,
                        c.total_spent,
                        votes,
                        voice_credit_factor=cfg.voice_credit_factor,
                        precision=cfg.precision,
                        overflow=cfg.alpha_overflow,
                        zero_boost=cfg.zero_boost,
                    )
                except FundArithmeticError as e:
                    metrics.record_finalize("failed")
                    log.error("round: alpha computation failed round=%s err=%s", self.round_id, e)
                    raise

            self.claims.set_budget(resolved)
            self._budget = resolved
            self._alpha = alpha
            self._advance(RoundState.FINALIZED)
            metrics.record_finalize("clamped" if alpha.clamped else ("zero" if alpha.value == 0 else "ok"))
            self._emit(RoundFinalized(round_id=self.round_id, budget=resolved, alpha=alpha.value,
                                      precision=alpha.precision))
            return alpha

    # --- disbursing ---

    def allocation_for(self, recipient_index: int) -> int:
        if self._alpha is None:
            raise WrongState(operation="allocation", state=self._state.name,
                             expected=[RoundState.FINALIZED.name, RoundState.DISBURSING.name])
        spent, votes = self.commitment.get_recipient_data(recipient_index)
        return compute_allocation(votes, spent, self._alpha, voice_credit_factor=self.config.voice_credit_factor)

    def claim(self, recipient_index: int, claimant: str) -> int:
        with self._lock:
            self._require("claim", RoundState.FINALIZED, RoundState.DISBURSING)
            amount = self.claims.claim(recipient_index, claimant, self.allocation_for)
            if self._state is RoundState.FINALIZED:
                self._advance(RoundState.DISBURSING)
            return amount

    def redeem(self, recipient_index: int, redeemer: str, claimed_amount: Optional[int] = None) -> int:
        with self._lock:
            self._require("redeem", RoundState.FINALIZED, RoundState.DISBURSING)
            return self.redemptions.redeem(recipient_index, redeemer, claimed_amount)

    # --- read-only views ---

    def get_recipient_data(self, recipient_index: int) -> Tuple[int, int]:
        return self.commitment.get_recipient_data(recipient_index)

    def preview_allocation(self, recipient_index: int) -> int:
        return self.allocation_for(recipient_index)

    def preview_all(self) -> List[Dict[str, int]]:
        if self._alpha is None:
            raise WrongState(operation="preview_all", state=self._state.name,
                             expected=[RoundState.FINALIZED.name, RoundState.DISBURSING.name])
        return allocation_table(self.commitment.spent, self.commitment.tally, self._alpha,
                                voice_credit_factor=self.config.voice_credit_factor)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "round": self.round_id,
                "state": self._state.name,
                "tally_hash": self._tally_hash,
                "budget": self._budget,
                "alpha": self._alpha.to_dict() if self._alpha is not None else None,
                "disbursed": self.claims.total_disbursed,
                "commitment": self.commitment.snapshot(),
                "claims": [r.to_dict() for r in self.claims.records()],
                "redemptions": [r.to_dict() for r in self.redemptions.records()],
            }


__all__ = ["RoundState", "RoundCoordinator"]
