# models/user.py

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet
import json


@dataclass(frozen=True)
class User:
    """
    用户的信誉 / 钱包快照

    barter_score 保留两位小数；badges 只增不减
    """

    id: str
    barter_score: float = 0.0
    badges: FrozenSet[str] = field(default_factory=frozenset)
    trade_coins: int = 0

    def with_changes(self, **changes) -> "User":
        return replace(self, **changes)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "barterScore": self.barter_score,
            "badges": sorted(self.badges),
            "tradeCoins": self.trade_coins,
        }

    @staticmethod
    def from_row(row: Dict) -> "User":
        badges = row.get("badges") or "[]"
        if isinstance(badges, str):
            badges = json.loads(badges)
        return User(
            id=row["id"],
            barter_score=float(row.get("barter_score") or 0),
            badges=frozenset(badges),
            trade_coins=int(row.get("trade_coins") or 0),
        )
