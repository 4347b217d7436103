from functools import lru_cache

from auctionhouse.core.config import get_settings
from auctionhouse.services.bidding import BiddingPolicy
from auctionhouse.services.lifecycle import RetryPolicy


@lru_cache
def get_bidding_policy() -> BiddingPolicy:
    """설정에서 한 번 만들어 라우터에 주입 (테스트에서는 dependency_overrides)"""
    return BiddingPolicy.from_settings(get_settings())


def get_retry_policy() -> RetryPolicy:
    return get_bidding_policy().retry
