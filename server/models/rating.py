# models/rating.py

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


@dataclass(frozen=True)
class Rating:
    """
    评分记录，创建后不可修改
    """

    id: str
    rater_id: str
    rated_user_id: str
    score: int
    trade_id: Optional[str] = None
    comment: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "raterId": self.rater_id,
            "ratedUserId": self.rated_user_id,
            "tradeId": self.trade_id,
            "score": self.score,
            "comment": self.comment,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    @staticmethod
    def from_row(row: Dict) -> "Rating":
        return Rating(
            id=row["id"],
            rater_id=row["rater_id"],
            rated_user_id=row["rated_user_id"],
            score=int(row["score"]),
            trade_id=row.get("trade_id"),
            comment=row.get("comment"),
            created_at=row["created_at"],
        )
