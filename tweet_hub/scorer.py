"""相关性过滤：决定一条分类结果是否保留"""

from tweet_hub.models import ClassificationResult

ACCEPTED_SENTIMENTS = ("positive", "neutral")


def accept(result: ClassificationResult) -> bool:
    """
    保留条件（同时满足）：
    - impact 不是 low
    - 至少命中一个话题
    - 情绪为 positive 或 neutral
    """
    if result.impact == "low":
        return False
    if not result.topics:
        return False
    return result.sentiment in ACCEPTED_SENTIMENTS
