"""Trade reads across the legacy and modern document shapes."""

import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from ..errors import InvalidArgumentError
from ..models.record import ReadResult, Trade
from ..models.schema import TRADE_FIELDS, where
from ..stores.base import DocumentStore
from .compatibility import CompatibilityService, FallbackQuery
from .normalizer import normalize_trade, trade_placeholder
from .validator import RecordValidator

logger = logging.getLogger(__name__)

_SKILL_SIDES = {
    "offered": "skillsOffered",
    "wanted": "skillsWanted",
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class TradeCompatibilityService(CompatibilityService):
    """Reads trades whatever their stored shape and returns dual-shape Trades."""

    entity_name = "trade"

    def __init__(
        self,
        store: DocumentStore,
        collection: str = "trades",
        validator: Optional[RecordValidator] = None,
        merge_legacy: bool = True,
    ):
        super().__init__(store, collection, validator)
        self.merge_legacy = merge_legacy

    def normalize(self, raw: Mapping[str, Any]) -> Trade:
        return normalize_trade(raw)

    def placeholder(self, doc_id: str) -> Trade:
        return trade_placeholder(doc_id)

    async def query_by_skill(
        self,
        skill_name: str,
        offered_or_wanted: str = "offered",
        status: Optional[str] = "active",
    ) -> List[ReadResult]:
        """
        Find trades offering or wanting a skill.

        Args:
            skill_name: Skill name (or id) to look for
            offered_or_wanted: "offered" or "wanted"
            status: Trade status to filter on, or None for any

        Raises:
            InvalidArgumentError: on a blank skill name or an unknown side
        """
        if not isinstance(skill_name, str) or not skill_name.strip():
            raise InvalidArgumentError("Skill name must be a non-empty string")
        if offered_or_wanted not in _SKILL_SIDES:
            raise InvalidArgumentError("offered_or_wanted must be 'offered' or 'wanted'")

        modern_field = _SKILL_SIDES[offered_or_wanted]
        legacy_field = TRADE_FIELDS.legacy_for(modern_field)
        status_filter = [where("status", "==", status)] if status else []

        plan = FallbackQuery(
            name=f"trades by {offered_or_wanted} skill",
            primary=self.constraint_step([
                [where(modern_field, "array-contains-any", [skill_name])] + status_filter,
            ]),
            fallback=self.constraint_step([
                [where(legacy_field, "array-contains-any", [skill_name])] + status_filter,
            ]),
            merge=self.merge_legacy,
        )
        return self.read_results(await plan.run())

    async def query_by_user(self, user_id: str) -> List[ReadResult]:
        """
        Trades the user created or joined, newest first.

        Raises:
            InvalidArgumentError: if user_id is empty
        """
        if not isinstance(user_id, str) or not user_id:
            raise InvalidArgumentError("User id must be a non-empty string")

        modern = ["participants.creator", "participants.participant"]
        plan = FallbackQuery(
            name="trades by user",
            primary=self.constraint_step([[where(f, "==", user_id)] for f in modern]),
            fallback=self.constraint_step([[where(TRADE_FIELDS.legacy_for(f), "==", user_id)] for f in modern]),
            merge=self.merge_legacy,
        )
        results = self.read_results(await plan.run())
        results.sort(key=lambda r: r.entity.created_at or _EPOCH, reverse=True)
        return results
