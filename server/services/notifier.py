# services/notifier.py

import logging

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """
    默认通知实现：只写日志

    真正的推送（邮件 / websocket）替换这个对象即可，接口只有 notify
    """

    def notify(self, event: str, trade):
        logger.info("交易通知: %s, 交易ID: %s, 参与者: %s", event, trade.id, sorted(trade.participant_ids()))


def notify_quietly(notifier, event: str, trade):
    """
    发送即忘：通知失败只记日志，不影响已提交的交易
    """
    if notifier is None:
        return
    try:
        notifier.notify(event, trade)
    except Exception:
        logger.exception("交易通知发送失败: %s, 交易ID: %s", event, trade.id)
