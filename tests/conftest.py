"""
NFT Market - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from decimal import Decimal

import pytest
import pytest_asyncio

os.environ["NFTMARKET_APP_ENV"] = "testing"

from nftmarket.config import Settings
from nftmarket.kernel.clock import ManualClock
from nftmarket.kernel.context import MarketContext
from nftmarket.services.marketplace import MarketplaceService

# Fixed reference time so auction windows are deterministic
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings with the default marketplace policy."""
    return Settings(app_env="testing")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def context(settings: Settings, clock: ManualClock) -> MarketContext:
    return MarketContext(settings=settings, clock=clock)


@pytest.fixture
def market(context: MarketContext) -> MarketplaceService:
    return MarketplaceService(context)


# =============================================================================
# Seeded Items
# =============================================================================


@pytest_asyncio.fixture
async def collection(market: MarketplaceService):
    """A collection owned by alice."""
    return await market.create_collection("Genesis", owner="alice")


@pytest_asyncio.fixture
async def nft(market: MarketplaceService, collection):
    """An NFT owned by alice, minted at 0.1."""
    return await market.mint_nft(collection.id, "Genesis #1", Decimal("0.1"), caller="alice")


@pytest_asyncio.fixture
async def listed_nft(market: MarketplaceService, nft):
    """Alice's NFT listed for direct sale at 1.5."""
    await market.sell_nft(nft.id, seller="alice", price=Decimal("1.5"))
    return nft


@pytest_asyncio.fixture
async def auctioned_nft(market: MarketplaceService, nft):
    """Alice's NFT in an auction open over [T0, T0 + 1h) starting at 0.11."""
    await market.create_auction(
        nft.id,
        seller="alice",
        starting_price=Decimal("0.11"),
        start_time=T0,
        end_time=T0.replace(hour=13),
    )
    return nft


@pytest.fixture
def t0() -> datetime:
    """Time the manual clock starts at."""
    return T0
