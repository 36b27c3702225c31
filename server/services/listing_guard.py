# services/listing_guard.py

"""
物品可用位的批量加锁 / 解锁

 在调用方的事务内执行：先按 id 加行锁重读，全部校验通过后一条语句批量写入
 任何一个物品不满足条件，整个事务回滚，不会出现部分加锁
"""

import logging

from services.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class ListingAvailabilityGuard:

    def lock(self, session, listing_ids):
        """
        标记为不可用；已不可用的物品 -> ConflictError
        """
        ids = set(listing_ids)
        listings = self._load(session, ids)

        unavailable = sorted(i for i, listing in listings.items() if not listing.is_available)
        if unavailable:
            logger.warning("物品已被锁定，拒绝加锁: %s", unavailable)
            raise ConflictError("Listing {} is not available".format(unavailable[0]))

        session.set_listings_available(ids, False)
        logger.info("物品加锁成功: %s", sorted(ids))

    def unlock(self, session, listing_ids):
        """
        标记为可用

        交易生命周期里目前没有调用方：已接受的交易即使最终没完成，物品也保持锁定
        """
        ids = set(listing_ids)
        self._load(session, ids)
        session.set_listings_available(ids, True)
        logger.info("物品解锁成功: %s", sorted(ids))

    def _load(self, session, ids):
        listings = session.get_listings(ids, for_update=True)
        missing = sorted(ids - set(listings))
        if missing:
            raise NotFoundError("Listing {} not found".format(missing[0]))
        return listings
