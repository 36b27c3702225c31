# services/chain_validator.py

"""
多方交易链校验

校验顺序：
 1. 链长度 >= 3
 2. 发起人必须在链上
 3. 闭环：只校验首尾接缝，第一个节点的 declared_receiver 等于最后一个节点的 user，
    或最后一个节点的 declared_receiver 等于第一个节点的 user；中间相邻节点不校验
 4. 逐个节点：物品存在 -> 可用 -> 归属该节点用户
 5. 物品不能重复
"""

import logging
from typing import List

from models.trade import ChainLink
from services.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MIN_CHAIN_LENGTH = 3


class TradeChainValidator:

    def validate(self, session, proposer_id: str, chain: List[ChainLink]):
        if not chain or len(chain) < MIN_CHAIN_LENGTH:
            raise ValidationError("Invalid trade chain. Must include at least 3 participants")

        for index, link in enumerate(chain):
            if not isinstance(link, ChainLink) or not link.user_id or not link.listing_id or not link.declared_receiver_id:
                raise ValidationError("Invalid trade chain link at position {}".format(index))

        if not any(link.user_id == proposer_id for link in chain):
            raise ValidationError("Proposer must be part of the trade chain")

        # 只看首尾接缝：首节点交给末节点，或末节点交回首节点
        # 第二个条件是有意放宽的：按给出顺序书写的 A->B->C->A 只满足它（见 DESIGN.md 闭环决定 (c)）
        closes = (
            chain[0].declared_receiver_id == chain[-1].user_id
            or chain[-1].declared_receiver_id == chain[0].user_id
        )
        if not closes:
            raise ValidationError("Trade chain must form a complete loop")

        for link in chain:
            listing = session.get_listing(link.listing_id)

            if listing is None:
                raise NotFoundError("Listing {} not found".format(link.listing_id))

            if not listing.is_available:
                raise ConflictError("Listing {} is not available".format(link.listing_id))

            if listing.owner_id != link.user_id:
                raise ForbiddenError(
                    "User {} does not own listing {}".format(link.user_id, link.listing_id)
                )

        seen = set()
        for link in chain:
            if link.listing_id in seen:
                raise ValidationError("Listing {} appears more than once in the trade chain".format(link.listing_id))
            seen.add(link.listing_id)

        logger.info("交易链校验通过，发起人: %s, 节点数: %s", proposer_id, len(chain))
