# models/trade.py

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union
import json


# 交易状态
PROPOSED = "proposed"
ACCEPTED = "accepted"
REJECTED = "rejected"
COMPLETED = "completed"
CANCELLED = "cancelled"

TRADE_STATUSES = (PROPOSED, ACCEPTED, REJECTED, COMPLETED, CANCELLED)

# 合法的状态跳转，其余一律视为冲突
TRANSITIONS = {
    PROPOSED: (ACCEPTED, REJECTED, CANCELLED),
    ACCEPTED: (COMPLETED,),
    REJECTED: (),
    COMPLETED: (),
    CANCELLED: (),
}

# 交易类型
DIRECT = "direct"
MULTI_PARTY = "multi-party"


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


@dataclass(frozen=True)
class ChainLink:
    """
    多方交易链中的一个节点：
    user_id 拿出 listing_id，交给 declared_receiver_id
    """

    user_id: str
    listing_id: str
    declared_receiver_id: str

    def to_dict(self) -> Dict:
        return {
            "userId": self.user_id,
            "listingId": self.listing_id,
            "declaredReceiverId": self.declared_receiver_id,
        }

    @staticmethod
    def from_dict(data: Dict) -> "ChainLink":
        """
        兼容两种写法：declaredReceiverId / receiverId
        """
        receiver = data.get("declaredReceiverId", data.get("receiverId"))
        if receiver is None:
            receiver = data.get("declared_receiver_id", data.get("receiver_id"))
        return ChainLink(
            user_id=data.get("userId", data.get("user_id")),
            listing_id=data.get("listingId", data.get("listing_id")),
            declared_receiver_id=receiver,
        )


@dataclass(frozen=True)
class DirectParticipants:
    proposer_listing_id: str
    receiver_listing_id: str


@dataclass(frozen=True)
class MultiPartyParticipants:
    chain: Tuple[ChainLink, ...]


Participants = Union[DirectParticipants, MultiPartyParticipants]


@dataclass(frozen=True)
class Trade:
    """
    Trade 是“交易在系统中的逻辑形态”
    不等同于数据库表

    快照对象，不可变；状态变更通过 with_changes 生成新快照再写回存储
    """

    id: str
    proposer_id: str
    receiver_id: Optional[str]
    participants: Participants
    status: str = PROPOSED
    trade_coin_amount: int = 0
    meetup_location: Optional[str] = None
    meetup_time: Optional[datetime] = None
    is_escrow: bool = False
    escrow_release_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    # ---------- 派生字段 ----------

    @property
    def type(self) -> str:
        if isinstance(self.participants, MultiPartyParticipants):
            return MULTI_PARTY
        return DIRECT

    @property
    def is_multi_party(self) -> bool:
        return self.type == MULTI_PARTY

    @property
    def proposer_listing_id(self) -> Optional[str]:
        if isinstance(self.participants, DirectParticipants):
            return self.participants.proposer_listing_id
        return None

    @property
    def receiver_listing_id(self) -> Optional[str]:
        if isinstance(self.participants, DirectParticipants):
            return self.participants.receiver_listing_id
        return None

    @property
    def trade_chain(self) -> List[ChainLink]:
        if isinstance(self.participants, MultiPartyParticipants):
            return list(self.participants.chain)
        return []

    @property
    def listing_ids(self) -> List[str]:
        if isinstance(self.participants, DirectParticipants):
            return [
                self.participants.proposer_listing_id,
                self.participants.receiver_listing_id,
            ]
        return [link.listing_id for link in self.participants.chain]

    def participant_ids(self) -> set:
        """
        参与者集合：直接交易为双方，多方交易为链上所有用户（含发起人）
        """
        ids = {self.proposer_id}
        if self.receiver_id is not None:
            ids.add(self.receiver_id)
        for link in self.trade_chain:
            ids.add(link.user_id)
        return ids

    def with_changes(self, **changes) -> "Trade":
        changes.setdefault("updated_at", datetime.now())
        return replace(self, **changes)

    # ---------- 统一结构 ----------

    def to_dict(self) -> Dict:
        """
        将 Trade 转为标准 dict 形式（API 返回）
        """
        return {
            "id": self.id,
            "proposerId": self.proposer_id,
            "receiverId": self.receiver_id,
            "proposerListingId": self.proposer_listing_id,
            "receiverListingId": self.receiver_listing_id,
            "status": self.status,
            "type": self.type,
            "tradeChain": [link.to_dict() for link in self.trade_chain] or None,
            "tradeCoinAmount": self.trade_coin_amount,
            "meetupLocation": self.meetup_location,
            "meetupTime": _iso(self.meetup_time),
            "isEscrow": self.is_escrow,
            "escrowReleaseDate": _iso(self.escrow_release_date),
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @staticmethod
    def from_row(row: Dict) -> "Trade":
        """
        从数据库行（DictCursor）构造 Trade
        """
        if row["type"] == MULTI_PARTY:
            raw_chain = row.get("trade_chain") or "[]"
            if isinstance(raw_chain, str):
                raw_chain = json.loads(raw_chain)
            participants = MultiPartyParticipants(
                chain=tuple(ChainLink.from_dict(item) for item in raw_chain)
            )
        else:
            participants = DirectParticipants(
                proposer_listing_id=row["proposer_listing_id"],
                receiver_listing_id=row["receiver_listing_id"],
            )

        return Trade(
            id=row["id"],
            proposer_id=row["proposer_id"],
            receiver_id=row.get("receiver_id"),
            participants=participants,
            status=row["status"],
            trade_coin_amount=row.get("trade_coin_amount") or 0,
            meetup_location=row.get("meetup_location"),
            meetup_time=row.get("meetup_time"),
            is_escrow=bool(row.get("is_escrow")),
            escrow_release_date=row.get("escrow_release_date"),
            notes=row.get("notes"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_row(self) -> Dict:
        """
        写入 DB 前的统一格式
        """
        chain = self.trade_chain
        return {
            "id": self.id,
            "proposer_id": self.proposer_id,
            "receiver_id": self.receiver_id,
            "proposer_listing_id": self.proposer_listing_id,
            "receiver_listing_id": self.receiver_listing_id,
            "status": self.status,
            "type": self.type,
            "trade_chain": json.dumps([link.to_dict() for link in chain]) if chain else None,
            "trade_coin_amount": self.trade_coin_amount,
            "meetup_location": self.meetup_location,
            "meetup_time": self.meetup_time,
            "is_escrow": self.is_escrow,
            "escrow_release_date": self.escrow_release_date,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
