# services/reputation_service.py

"""
评分 / barter_score / 徽章

 barter_score = 所有收到评分的平均值，四舍五入（half-up）到两位小数，每次全量重算
 徽章只增不减
 写评分、重算分数、更新徽章在同一事务里
"""

import logging
import math
import uuid
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from models.rating import Rating
from models.trade import COMPLETED
from services.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 5

EXPERIENCED_TRADER = "Experienced Trader"
TOP_RATED = "Top Rated"
EXPERIENCED_TRADER_MIN_RATINGS = 10
TOP_RATED_MIN_SCORE = 4.5

MAX_PAGE_SIZE = 100

_CENT = Decimal("0.01")


def round_score(value) -> float:
    """
    两位小数，half-up（2.345 -> 2.35），避免 float 的 banker's rounding 和二进制误差
    """
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def mean_score(scores: Iterable[int]) -> float:
    scores = list(scores)
    if not scores:
        return 0.0
    exact = Decimal(sum(scores)) / Decimal(len(scores))
    return float(exact.quantize(_CENT, rounding=ROUND_HALF_UP))


def earned_badges(rating_count: int, barter_score: float) -> set:
    badges = set()
    if rating_count >= EXPERIENCED_TRADER_MIN_RATINGS:
        badges.add(EXPERIENCED_TRADER)
    if barter_score >= TOP_RATED_MIN_SCORE:
        badges.add(TOP_RATED)
    return badges


class ReputationEngine:

    def __init__(self, repository, clock=datetime.now):
        self.repository = repository
        self.clock = clock

    # ============================================================
    #  RATE —— 评分
    # ============================================================

    def rate(
        self,
        rater_id: str,
        rated_user_id: str,
        score: int,
        comment: Optional[str] = None,
        trade_id: Optional[str] = None,
    ) -> Rating:
        if rater_id == rated_user_id:
            raise ValidationError("You cannot rate yourself")

        if isinstance(score, bool) or not isinstance(score, int) or not MIN_SCORE <= score <= MAX_SCORE:
            raise ValidationError("Score must be an integer between 1 and 5")

        with self.repository.transaction() as session:
            if trade_id is not None:
                trade = session.get_trade(trade_id)

                if trade is None:
                    raise NotFoundError("Trade not found")

                sides = (trade.proposer_id, trade.receiver_id)
                if rater_id not in sides or rated_user_id not in sides:
                    raise ForbiddenError("Both users must be part of the trade")

                if trade.status != COMPLETED:
                    raise ConflictError("Trade must be completed before rating")

                # 快速失败；真正的唯一性由存储层唯一索引保证
                if session.find_rating(rater_id, rated_user_id, trade_id):
                    raise ConflictError("You have already rated this user for this trade")

            rated_user = session.get_user(rated_user_id, for_update=True)
            if rated_user is None:
                raise NotFoundError("User not found")

            rating = Rating(
                id=str(uuid.uuid4()),
                rater_id=rater_id,
                rated_user_id=rated_user_id,
                score=score,
                trade_id=trade_id,
                comment=comment,
                created_at=self.clock(),
            )
            session.insert_rating(rating)

            scores = session.rating_scores(rated_user_id)
            barter_score = mean_score(scores)
            badges = rated_user.badges | earned_badges(len(scores), barter_score)

            session.update_user(rated_user.with_changes(
                barter_score=barter_score,
                badges=frozenset(badges),
            ))

        new_badges = sorted(badges - rated_user.badges)
        logger.info(
            "评分成功，被评人: %s, 分数: %s, 新 barter_score: %s, 新徽章: %s",
            rated_user_id, score, barter_score, new_badges,
        )
        return rating

    # ============================================================
    #  查询
    # ============================================================

    def get_stats(self, user_id: str) -> dict:
        """
        只读，不加锁
        """
        with self.repository.transaction() as session:
            user = session.get_user(user_id)
            if user is None:
                raise NotFoundError("User not found")
            scores = session.rating_scores(user_id)

        distribution = {value: 0 for value in range(MIN_SCORE, MAX_SCORE + 1)}
        for value in scores:
            distribution[value] = distribution.get(value, 0) + 1

        return {
            "userId": user_id,
            "barterScore": user.barter_score,
            "totalRatings": len(scores),
            "distribution": distribution,
        }

    def list_ratings(self, user_id: str, page: int = 1, limit: int = 10) -> dict:
        if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError("Invalid pagination parameters")

        with self.repository.transaction() as session:
            total, ratings = session.list_ratings(user_id, limit=limit, offset=(page - 1) * limit)

        return {
            "ratings": ratings,
            "totalPages": math.ceil(total / limit),
            "currentPage": page,
            "totalRatings": total,
        }
