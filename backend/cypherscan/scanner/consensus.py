# cypherscan/scanner/consensus.py
"""
Consensus engine: turns analyzer votes into a decision per finding group.

    engine = ConsensusEngine.for_analyzers(5, quorum_threshold=0.6, voting_timeout=300)
    engine.start_timeout(group_key, on_timeout)
    engine.submit_vote(vote)             # checks consensus once minimum_votes are in
    result = engine.final_result(group_key)

Decision rule (quorum alone decides whether consensus is reached):
    confirmed / total >= threshold   → CONFIRMED, reached
    rejected  / total >= threshold   → REJECTED,  reached
    otherwise                        → UNCERTAIN, not reached

Confidence score = mean confidence of the votes matching the decision,
scaled by matching / total. Narrow majorities score lower than unanimous ones.

`minimum_votes` only gates when submit_vote bothers to run a check. A timer
that fires before consensus hands control back to the caller, who finalizes
with whatever votes exist.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from cypherscan.scanner.base import Vote, VoteDecision

logger = logging.getLogger(__name__)

DEFAULT_QUORUM_THRESHOLD = 0.6
DEFAULT_VOTING_TIMEOUT = 5 * 60.0

# float slack for the inclusive threshold comparison
_EPSILON = 1e-9

ConsensusListener = Callable[[str, "ConsensusResult"], None]
TimeoutCallback = Callable[[str], None]


@dataclass(frozen=True)
class ConsensusResult:
    reached: bool
    decision: VoteDecision
    confidence_score: float
    breakdown: Dict[str, int] = field(default_factory=dict)
    total_votes: int = 0


class ConsensusEngine:
    """
    Per-group vote book with quorum checks and one-shot timeouts.

    Thread-safe: votes may arrive from analyzer threads while a timer thread
    fires. Listener and timeout callbacks are always invoked outside the
    engine's lock.
    """

    def __init__(
        self,
        quorum_threshold: float = DEFAULT_QUORUM_THRESHOLD,
        minimum_votes: int = 1,
        voting_timeout: float = DEFAULT_VOTING_TIMEOUT,
        weighting_enabled: bool = False,
        analyzer_weights: Optional[Dict[str, float]] = None,
        on_consensus: Optional[ConsensusListener] = None,
    ):
        if not 0 < quorum_threshold <= 1:
            raise ValueError("quorum_threshold must be in (0, 1]")
        if minimum_votes < 1:
            raise ValueError("minimum_votes must be >= 1")

        self.quorum_threshold = quorum_threshold
        self.minimum_votes = minimum_votes
        self.voting_timeout = voting_timeout
        self.weighting_enabled = weighting_enabled
        self.analyzer_weights = dict(analyzer_weights or {})
        self.on_consensus = on_consensus

        self._votes: Dict[str, Dict[str, Vote]] = {}      # group → analyzer → vote
        self._timers: Dict[str, Tuple[object, threading.Timer]] = {}
        self._reached: Set[str] = set()
        self._closed: Set[str] = set()
        self._lock = threading.RLock()

    @classmethod
    def for_analyzers(cls, analyzer_count: int, **kwargs) -> "ConsensusEngine":
        """Default minimum_votes to half the analyzer pool, never below one."""
        if kwargs.get("minimum_votes") is None:
            kwargs["minimum_votes"] = max(1, analyzer_count // 2)
        return cls(**kwargs)

    # -------------------------------------------------------------------
    # Voting
    # -------------------------------------------------------------------

    def submit_vote(self, vote: Vote) -> Optional[ConsensusResult]:
        """
        Record a vote, replacing any earlier vote by the same analyzer on
        the same group. Returns the result if this vote brought the group
        to consensus, else None. Votes for closed groups are dropped.
        """
        with self._lock:
            if not self._record(vote):
                return None
            result = self._check_consensus(vote.group_key)

        if result is not None and self.on_consensus:
            self.on_consensus(vote.group_key, result)
        return result

    def submit_votes(self, votes: Iterable[Vote]) -> Dict[str, ConsensusResult]:
        """
        Record several votes, then check each touched group once.

        Used for votes that exist together (e.g. every reporter of a group),
        so the first of them cannot decide the group before the rest land.
        Returns the groups this batch brought to consensus.
        """
        reached: Dict[str, ConsensusResult] = {}
        with self._lock:
            touched = [v.group_key for v in votes if self._record(v)]
            for key in dict.fromkeys(touched):
                result = self._check_consensus(key)
                if result is not None:
                    reached[key] = result

        if self.on_consensus:
            for key, result in reached.items():
                self.on_consensus(key, result)
        return reached

    def _record(self, vote: Vote) -> bool:
        # caller holds the lock
        if vote.group_key in self._closed:
            logger.debug(
                f"Dropped late vote from {vote.analyzer_id} on closed group {vote.group_key}"
            )
            return False

        book = self._votes.setdefault(vote.group_key, {})
        if vote.analyzer_id in book:
            logger.info(f"Analyzer {vote.analyzer_id} updated vote for {vote.group_key}")
        else:
            logger.info(
                f"Analyzer {vote.analyzer_id} voted on {vote.group_key}: "
                f"{vote.decision.value} ({vote.confidence:g}%)"
            )
        book[vote.analyzer_id] = vote
        return True

    def _check_consensus(self, group_key: str) -> Optional[ConsensusResult]:
        # caller holds the lock
        votes = list(self._votes.get(group_key, {}).values())
        if len(votes) < self.minimum_votes:
            return None

        result = self.compute_consensus(votes)
        if not result.reached:
            return None

        first_time = group_key not in self._reached
        self._reached.add(group_key)
        self.cancel_timeout(group_key)
        if first_time:
            logger.info(
                f"Consensus reached for {group_key}: {result.decision.value} "
                f"({result.confidence_score}%)"
            )
        return result

    def compute_consensus(self, votes: Sequence[Vote]) -> ConsensusResult:
        """Pure tally over `votes`; independent of their order."""
        if not votes:
            return ConsensusResult(
                reached=False,
                decision=VoteDecision.UNCERTAIN,
                confidence_score=0.0,
                breakdown={},
                total_votes=0,
            )

        weighted = self._apply_weights(votes) if self.weighting_enabled else list(votes)

        breakdown = Counter(v.decision.value for v in weighted)
        total = len(weighted)
        confirmed_fraction = breakdown.get(VoteDecision.CONFIRMED.value, 0) / total
        rejected_fraction = breakdown.get(VoteDecision.REJECTED.value, 0) / total

        if confirmed_fraction + _EPSILON >= self.quorum_threshold:
            decision, reached = VoteDecision.CONFIRMED, True
        elif rejected_fraction + _EPSILON >= self.quorum_threshold:
            decision, reached = VoteDecision.REJECTED, True
        else:
            decision, reached = VoteDecision.UNCERTAIN, False

        return ConsensusResult(
            reached=reached,
            decision=decision,
            confidence_score=self._confidence_score(weighted, decision),
            breakdown=dict(sorted(breakdown.items())),
            total_votes=total,
        )

    def _apply_weights(self, votes: Sequence[Vote]) -> List[Vote]:
        if not self.analyzer_weights:
            return list(votes)
        return [
            replace(v, confidence=min(100.0, v.confidence * self.analyzer_weights.get(v.analyzer_id, 1.0)))
            for v in votes
        ]

    @staticmethod
    def _confidence_score(votes: Sequence[Vote], decision: VoteDecision) -> float:
        matching = sorted(v.confidence for v in votes if v.decision == decision)
        if not matching:
            return 0.0

        avg_confidence = math.fsum(matching) / len(matching)
        consensus_strength = len(matching) / len(votes)
        return round(avg_confidence * consensus_strength, 2)

    # -------------------------------------------------------------------
    # Timeouts
    # -------------------------------------------------------------------

    def start_timeout(
        self,
        group_key: str,
        on_timeout: TimeoutCallback,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Arm a one-shot timer for `group_key`, replacing any armed one.

        `on_timeout(group_key)` runs at most once, and never if consensus is
        reached (or the timer is cancelled) first.
        """
        delay = self.voting_timeout if timeout is None else timeout
        token = object()
        timer = threading.Timer(delay, self._fire_timeout, args=(group_key, token, on_timeout))
        timer.daemon = True
        timer.name = f"vote-timeout-{group_key}"

        with self._lock:
            self.cancel_timeout(group_key)
            self._timers[group_key] = (token, timer)
        timer.start()

    def _fire_timeout(self, group_key: str, token: object, on_timeout: TimeoutCallback) -> None:
        with self._lock:
            armed = self._timers.get(group_key)
            if armed is None or armed[0] is not token:
                return
            del self._timers[group_key]

        logger.warning(f"Vote timeout reached for {group_key}")
        on_timeout(group_key)

    def cancel_timeout(self, group_key: str) -> bool:
        with self._lock:
            armed = self._timers.pop(group_key, None)
        if armed is None:
            return False
        armed[1].cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            keys = list(self._timers)
        for key in keys:
            self.cancel_timeout(key)

    # -------------------------------------------------------------------
    # Queries / housekeeping
    # -------------------------------------------------------------------

    def get_votes(self, group_key: str) -> List[Vote]:
        with self._lock:
            return list(self._votes.get(group_key, {}).values())

    def is_reached(self, group_key: str) -> bool:
        with self._lock:
            return group_key in self._reached

    def final_result(self, group_key: str) -> ConsensusResult:
        """Threshold verdict over whatever votes the group holds right now."""
        return self.compute_consensus(self.get_votes(group_key))

    def close(self, group_key: str) -> ConsensusResult:
        """Freeze the group: cancel its timer, refuse further votes, return the verdict."""
        with self._lock:
            self._closed.add(group_key)
            self.cancel_timeout(group_key)
            return self.final_result(group_key)

    def clear(self, group_key: str) -> None:
        with self._lock:
            self._votes.pop(group_key, None)
            self._reached.discard(group_key)
            self._closed.discard(group_key)
            self.cancel_timeout(group_key)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "pendingGroups": len(set(self._votes) - self._closed),
                "totalVotes": sum(len(b) for b in self._votes.values()),
                "activeTimeouts": len(self._timers),
            }
