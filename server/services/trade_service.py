# services/trade_service.py

"""

 验证交易合法性
 维护交易状态机
 每个操作是一个完整事务：状态、物品锁、代币、分数一起提交或一起回滚

 状态机：
   proposed -> accepted | rejected | cancelled
   accepted -> completed
 其余跳转一律 ConflictError
"""

import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from models.trade import (
    ACCEPTED,
    CANCELLED,
    COMPLETED,
    PROPOSED,
    REJECTED,
    TRADE_STATUSES,
    ChainLink,
    DirectParticipants,
    MultiPartyParticipants,
    Trade,
    can_transition,
)
from services.chain_validator import TradeChainValidator
from services.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from services.listing_guard import ListingAvailabilityGuard
from services.notifier import LoggingNotifier, notify_quietly
from services.reputation_service import round_score

logger = logging.getLogger(__name__)

ESCROW_HOLD_DAYS = 7
COMPLETION_SCORE_BONUS = 0.5
MATCH_LIMIT = 20
MAX_PAGE_SIZE = 100

ROLES = ("proposer", "receiver")


class TradeEngine:

    def __init__(self, repository, guard=None, chain_validator=None, notifier=None, clock=datetime.now):
        self.repository = repository
        self.guard = guard or ListingAvailabilityGuard()
        self.chain_validator = chain_validator or TradeChainValidator()
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.clock = clock

    # ============================================================
    #  PROPOSE —— 发起直接交易
    # ============================================================

    def propose(
        self,
        proposer_id: str,
        receiver_id: str,
        proposer_listing_id: str,
        receiver_listing_id: str,
        trade_coin_amount: int = 0,
        notes: Optional[str] = None,
    ) -> Trade:
        """
        发起交易，不锁定任何物品（同一物品可以同时出现在多个待处理提议里）

        同样的请求提交两次会生成两条交易，不做去重
        """
        if not receiver_id or not proposer_listing_id or not receiver_listing_id:
            raise ValidationError("receiverId, proposerListingId and receiverListingId are required")

        if proposer_id == receiver_id:
            raise ValidationError("You cannot trade with yourself")

        if trade_coin_amount is None:
            trade_coin_amount = 0
        if isinstance(trade_coin_amount, bool) or not isinstance(trade_coin_amount, int) or trade_coin_amount < 0:
            raise ValidationError("tradeCoinAmount must be a non-negative integer")

        with self.repository.transaction() as session:
            proposer_listing = session.get_listing(proposer_listing_id)
            receiver_listing = session.get_listing(receiver_listing_id)

            if proposer_listing is None or receiver_listing is None:
                raise NotFoundError("One or both listings not found")

            if proposer_listing.owner_id != proposer_id:
                raise ForbiddenError("You do not own the proposer listing")

            if receiver_listing.owner_id != receiver_id:
                raise ForbiddenError("Receiver does not own the receiver listing")

            if not proposer_listing.is_available or not receiver_listing.is_available:
                raise ConflictError("One or both listings are not available for trade")

            now = self.clock()
            trade = Trade(
                id=str(uuid.uuid4()),
                proposer_id=proposer_id,
                receiver_id=receiver_id,
                participants=DirectParticipants(
                    proposer_listing_id=proposer_listing_id,
                    receiver_listing_id=receiver_listing_id,
                ),
                status=PROPOSED,
                trade_coin_amount=trade_coin_amount,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            session.insert_trade(trade)

        logger.info("交易已发起，交易ID: %s, 发起人: %s, 接收人: %s", trade.id, proposer_id, receiver_id)
        return trade

    # ============================================================
    #  PROPOSE CHAIN —— 发起多方交易
    # ============================================================

    def propose_chain(self, proposer_id: str, chain: List[ChainLink], notes: Optional[str] = None) -> Trade:
        """
        多方交易只定义到“发起”为止：不锁物品，也没有接受 / 完成流程
        """
        with self.repository.transaction() as session:
            self.chain_validator.validate(session, proposer_id, chain)

            now = self.clock()
            trade = Trade(
                id=str(uuid.uuid4()),
                proposer_id=proposer_id,
                receiver_id=None,
                participants=MultiPartyParticipants(chain=tuple(chain)),
                status=PROPOSED,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            session.insert_trade(trade)

        logger.info("多方交易已发起，交易ID: %s, 节点数: %s", trade.id, len(chain))
        return trade

    # ============================================================
    #  ACCEPT —— 接收人接受交易并锁定双方物品
    # ============================================================

    def accept(
        self,
        trade_id: str,
        actor_id: str,
        meetup_location: Optional[str] = None,
        meetup_time: Optional[datetime] = None,
        is_escrow: bool = False,
    ) -> Trade:
        with self.repository.transaction() as session:
            trade = self._load_for_update(session, trade_id)

            if trade.is_multi_party:
                raise ConflictError("Multi-party trades cannot be accepted")

            if trade.receiver_id != actor_id:
                raise ForbiddenError("Unauthorized: Only the receiver can accept the trade")

            self._check_transition(trade, ACCEPTED)

            now = self.clock()
            updated = trade.with_changes(
                status=ACCEPTED,
                meetup_location=meetup_location,
                meetup_time=meetup_time,
                is_escrow=bool(is_escrow),
                escrow_release_date=now + timedelta(days=ESCROW_HOLD_DAYS) if is_escrow else None,
                updated_at=now,
            )

            # 物品锁和状态写入在同一事务里
            self.guard.lock(session, trade.listing_ids)
            session.update_trade(updated)

        logger.info("交易已接受，交易ID: %s, 托管: %s", trade_id, updated.is_escrow)
        notify_quietly(self.notifier, "trade.accepted", updated)
        return updated

    # ============================================================
    #  REJECT —— 任一参与者拒绝
    # ============================================================

    def reject(self, trade_id: str, actor_id: str, reason: Optional[str] = None) -> Trade:
        """
        拒绝原因追加到 notes 末尾，不覆盖原有备注；不涉及物品
        """
        with self.repository.transaction() as session:
            trade = self._load_for_update(session, trade_id)
            self._check_participant(trade, actor_id)
            self._check_transition(trade, REJECTED)

            line = "Rejection reason: {}".format(reason)
            notes = "{}\n{}".format(trade.notes, line) if trade.notes else line

            updated = trade.with_changes(status=REJECTED, notes=notes, updated_at=self.clock())
            session.update_trade(updated)

        logger.info("交易已拒绝，交易ID: %s, 操作人: %s", trade_id, actor_id)
        return updated

    # ============================================================
    #  CANCEL —— 发起人撤回
    # ============================================================

    def cancel(self, trade_id: str, actor_id: str) -> Trade:
        """
        只能撤回 proposed 状态的交易；已接受的交易不能撤回
        """
        with self.repository.transaction() as session:
            trade = self._load_for_update(session, trade_id)

            if trade.proposer_id != actor_id:
                raise ForbiddenError("Only the trade proposer can cancel a trade")

            self._check_transition(trade, CANCELLED)

            updated = trade.with_changes(status=CANCELLED, updated_at=self.clock())
            session.update_trade(updated)

        logger.info("交易已撤回，交易ID: %s", trade_id)
        return updated

    # ============================================================
    #  COMPLETE —— 完成交易：代币转账 + 双方加分
    # ============================================================

    def complete(self, trade_id: str, actor_id: str) -> Trade:
        """
        代币转账和加分只会发生一次：交易行在事务内加锁重读，
        并发的第二次调用会看到 completed 状态并得到 ConflictError

        物品保持锁定（物品已经易手）
        """
        with self.repository.transaction() as session:
            trade = self._load_for_update(session, trade_id)

            if trade.is_multi_party:
                raise ConflictError("Multi-party trades cannot be completed")

            self._check_participant(trade, actor_id)
            self._check_transition(trade, COMPLETED)

            # 双方用户一次性按 id 顺序加锁，反向的两笔交易同时完成时不会互相等待
            users = session.get_users([trade.proposer_id, trade.receiver_id], for_update=True)
            proposer = users.get(trade.proposer_id)
            receiver = users.get(trade.receiver_id)
            if proposer is None or receiver is None:
                raise NotFoundError("Trade participant not found")

            amount = trade.trade_coin_amount
            proposer_coins = proposer.trade_coins - amount if amount > 0 else proposer.trade_coins
            receiver_coins = receiver.trade_coins + amount if amount > 0 else receiver.trade_coins

            session.update_user(proposer.with_changes(
                barter_score=round_score(proposer.barter_score + COMPLETION_SCORE_BONUS),
                trade_coins=proposer_coins,
            ))
            session.update_user(receiver.with_changes(
                barter_score=round_score(receiver.barter_score + COMPLETION_SCORE_BONUS),
                trade_coins=receiver_coins,
            ))

            updated = trade.with_changes(status=COMPLETED, updated_at=self.clock())
            session.update_trade(updated)

        logger.info("交易已完成，交易ID: %s, 代币: %s", trade_id, amount)
        notify_quietly(self.notifier, "trade.completed", updated)
        return updated

    # ============================================================
    #  查询
    # ============================================================

    def get_trade(self, trade_id: str, actor_id: str) -> Trade:
        with self.repository.transaction() as session:
            trade = session.get_trade(trade_id)

        if trade is None:
            raise NotFoundError("Trade not found")

        if actor_id not in trade.participant_ids():
            raise ForbiddenError("Unauthorized: You are not part of this trade")

        return trade

    def list_trades(self, user_id: str, status=None, role=None, page: int = 1, limit: int = 10) -> dict:
        """
        获取用户参与的交易（分页，按创建时间倒序）
        """
        if status is not None and status not in TRADE_STATUSES:
            raise ValidationError("Invalid status: {}".format(status))
        if role is not None and role not in ROLES:
            raise ValidationError("Invalid role: {}".format(role))
        if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError("Invalid pagination parameters")

        with self.repository.transaction() as session:
            total, trades = session.list_trades(
                user_id, status=status, role=role, limit=limit, offset=(page - 1) * limit
            )

        return {
            "trades": trades,
            "totalPages": math.ceil(total / limit),
            "currentPage": page,
            "totalTrades": total,
        }

    def find_matches(self, listing_id: str, actor_id: str, category=None, min_value=None, max_value=None) -> dict:
        """
        为自己的物品寻找可交换的候选物品（不做距离匹配）
        """
        try:
            min_value = float(min_value) if min_value is not None else None
            max_value = float(max_value) if max_value is not None else None
        except (TypeError, ValueError):
            raise ValidationError("minValue and maxValue must be numbers")

        with self.repository.transaction() as session:
            listing = session.get_listing(listing_id)

            if listing is None:
                raise NotFoundError("Listing not found")

            if listing.owner_id != actor_id:
                raise ForbiddenError("Unauthorized: You do not own this listing")

            matches = session.search_listings(
                actor_id,
                category=category,
                min_value=min_value,
                max_value=max_value,
                limit=MATCH_LIMIT,
            )

        return {"userListing": listing, "potentialMatches": matches}

    # ---------- 内部校验 ----------

    def _load_for_update(self, session, trade_id):
        trade = session.get_trade(trade_id, for_update=True)
        if trade is None:
            raise NotFoundError("Trade not found")
        return trade

    def _check_participant(self, trade, actor_id):
        if actor_id not in trade.participant_ids():
            raise ForbiddenError("Unauthorized: You are not part of this trade")

    def _check_transition(self, trade, target):
        if not can_transition(trade.status, target):
            logger.warning("非法状态跳转，交易ID: %s, %s -> %s", trade.id, trade.status, target)
            raise ConflictError(
                "Trade cannot be {} because it is {}".format(target, trade.status)
            )
