"""Ban recommendation heuristic over a user's flagging history.

Produces a recommendation only; suspending an account is an admin action
performed elsewhere.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from civicguard.config import ModerationConfig
from civicguard.moderation.models import BanRecommendation, BanSignal
from civicguard.store.sqlite_store import RecordStore, to_iso


class BanEvaluator:
    """Read-only evaluator of flagging abuse.

    A flag counts as *rejected* when its review approved the target issue,
    i.e. the flag itself was judged invalid. The rejection rate is taken over
    reviewed flags only.
    """

    def __init__(self, store: RecordStore, config: Optional[ModerationConfig] = None) -> None:
        self._store = store
        self._config = config or ModerationConfig()

    def signal(self, user_id: str, now: Optional[datetime] = None) -> BanSignal:
        now = now or datetime.now(timezone.utc)
        since = to_iso(now - timedelta(days=self._config.ban_recent_window_days))
        counts = self._store.user_flag_counts(user_id, since)
        reviewed = counts["reviewed"]
        rate = counts["rejected"] / reviewed if reviewed else 0.0
        return BanSignal(
            recent_flag_count=counts["recent"],
            total_flag_count=counts["total"],
            reviewed_flag_count=reviewed,
            rejected_flag_count=counts["rejected"],
            rejection_rate=rate,
        )

    def evaluate(self, user_id: str, now: Optional[datetime] = None) -> BanRecommendation:
        cfg = self._config
        sig = self.signal(user_id, now)
        reasons = []
        if sig.recent_flag_count > cfg.ban_recent_flag_limit:
            reasons.append(
                f"{sig.recent_flag_count} flags in the last {cfg.ban_recent_window_days} days "
                f"(limit {cfg.ban_recent_flag_limit})"
            )
        if sig.total_flag_count > cfg.ban_min_total_flags and sig.rejection_rate > cfg.ban_rejection_rate:
            reasons.append(
                f"{sig.rejection_rate:.0%} of reviewed flags rejected "
                f"over {sig.total_flag_count} flags"
            )
        return BanRecommendation(
            user_id=user_id,
            should_ban=bool(reasons),
            signal=sig,
            reasons=tuple(reasons),
        )
