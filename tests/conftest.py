"""Pytest configuration and shared fixtures for all tests."""

import os
from datetime import datetime
from decimal import Decimal

# Keep a developer .env from leaking into the test run
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DIRECT_INCOME_PERCENTAGE", "0")
os.environ.setdefault("GENERATION_PLAN_ENABLED", "false")

import pytest

from database import get_session, init_tables
from models import Account, PackageType, RankTier
from mlm_engine.config.plans import DEFAULT_LEVEL_INCOME_PERCENTAGES
from mlm_engine.config.ranks import RANK_CONFIG
from mlm_engine.events.event_bus import eventBus
from mlm_engine.services.account_service import AccountService
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.utils.time_machine import timeMachine

START_TIME = datetime(2025, 1, 1, 12, 0, 0)


@pytest.fixture
def session():
    """Fresh in-memory SQLite database per test."""
    sessionFactory, engine = get_session("sqlite://")
    init_tables(engine)
    session = sessionFactory()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture(autouse=True)
def clock():
    """Pin engine time to a known day."""
    timeMachine.setTime(START_TIME, operator="tests")
    yield timeMachine
    timeMachine.resetToRealTime()


@pytest.fixture(autouse=True)
def cleanEventBus():
    eventBus.clear()
    yield eventBus
    eventBus.clear()


@pytest.fixture
def capturedEvents():
    """Subscribe to an event and collect its payloads."""
    captured = {}

    def _capture(eventName):
        captured[eventName] = []
        eventBus.subscribe(eventName, lambda data: captured[eventName].append(data))
        return captured[eventName]

    return _capture


@pytest.fixture
def rankTiers(session):
    tiers = []
    for rank, requirements in RANK_CONFIG.items():
        tier = RankTier(rankName=rank.value, **requirements)
        session.add(tier)
        tiers.append(tier)
    session.commit()
    return {tier.rankName: tier for tier in tiers}


@pytest.fixture
def packageType(session):
    """1% per day, 200% cap, one year, default level table."""
    packageType = PackageType(
        name="Growth",
        minInvestment=Decimal("100"),
        maxInvestment=Decimal("100000"),
        dailyRoiPercentage=Decimal("1"),
        durationDays=365,
        roiCapMultiplier=Decimal("2"),
        levelIncomePercentages=list(DEFAULT_LEVEL_INCOME_PERCENTAGES),
        isActive=True
    )
    session.add(packageType)
    session.commit()
    return packageType


@pytest.fixture
def enroll(session):
    """Enroll an account through the engine, optionally funding its wallet."""
    accountService = AccountService(session)
    ledger = LedgerService(session)

    async def _enroll(email, sponsor=None, parent=None, side=None, balance=None):
        account = await accountService.enroll(
            email,
            sponsorAccountId=sponsor.accountID if sponsor else None,
            parentAccountId=parent.accountID if parent else None,
            side=side
        )
        if balance:
            await ledger.deposit(account.accountID, Decimal(balance))
            session.commit()
        return account

    return _enroll


@pytest.fixture
def makeChain(session):
    """Sponsor chain without tree nodes: returns accounts top first."""

    def _makeChain(length, rank=None):
        accounts = []
        sponsorId = None
        for index in range(length):
            account = Account(email=f"chain{index}@example.com", sponsorID=sponsorId, rank=rank)
            session.add(account)
            session.flush()
            accounts.append(account)
            sponsorId = account.accountID
        session.commit()
        return accounts

    return _makeChain
