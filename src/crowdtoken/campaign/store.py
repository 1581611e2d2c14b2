"""Investor ledger stores.

Token batches are built from ``store.snapshot()``: while the context is
open the ledger is held fixed, so no investor is added and no amount
changes mid-build.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Iterator

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.pool import StaticPool

from crowdtoken import config
from crowdtoken.errors import CampaignStateError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvestorRecord:
    identity_key: str
    amount: int
    timestamp: int
    redeemed: bool = False


@dataclass(frozen=True)
class CampaignState:
    goal: int = config.CAMPAIGN_GOAL_SATOSHIS
    raised: int = 0
    is_complete: bool = False
    completion_txid: str | None = None

    @property
    def percent_funded(self) -> int:
        return round(self.raised / self.goal * 100) if self.goal else 0


class InvestorStore(ABC):
    """Ledger interface injected into token building; backing storage is opaque."""

    def __init__(self):
        self._lock = threading.RLock()

    @abstractmethod
    def get(self, identity_key: str) -> InvestorRecord | None: ...

    @abstractmethod
    def put(self, record: InvestorRecord) -> None: ...

    @abstractmethod
    def list_investors(self) -> list[InvestorRecord]: ...

    @abstractmethod
    def get_campaign(self) -> CampaignState: ...

    @abstractmethod
    def put_campaign(self, state: CampaignState) -> None: ...

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Serialize read-modify-write sequences against the ledger."""
        with self._lock:
            yield

    @contextmanager
    def snapshot(self) -> Iterator[tuple[InvestorRecord, ...]]:
        """Hold the ledger fixed and yield an immutable copy of the investor list."""
        with self._lock:
            yield tuple(self.list_investors())


class InMemoryInvestorStore(InvestorStore):

    def __init__(self, campaign: CampaignState | None = None):
        super().__init__()
        self._investors: dict[str, InvestorRecord] = {}
        self._campaign = campaign or CampaignState()

    def get(self, identity_key: str) -> InvestorRecord | None:
        with self._lock:
            return self._investors.get(identity_key)

    def put(self, record: InvestorRecord) -> None:
        with self._lock:
            self._investors[record.identity_key] = record

    def list_investors(self) -> list[InvestorRecord]:
        with self._lock:
            return list(self._investors.values())

    def get_campaign(self) -> CampaignState:
        with self._lock:
            return self._campaign

    def put_campaign(self, state: CampaignState) -> None:
        with self._lock:
            self._campaign = state


def _create_engine(url: str):
    # an in-memory SQLite database exists per connection; share one across threads
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url)


class SqlInvestorStore(InvestorStore):
    """SQLAlchemy-backed ledger (SQLite by default)."""

    metadata = MetaData()
    investors = Table(
        "investors",
        metadata,
        Column("identity_key", String, primary_key=True),
        Column("amount", Integer, nullable=False),
        Column("timestamp", Integer, nullable=False),
        Column("redeemed", Boolean, nullable=False, default=False),
        Column("position", Integer, nullable=False),
    )
    campaign = Table(
        "campaign",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("goal", Integer, nullable=False),
        Column("raised", Integer, nullable=False),
        Column("is_complete", Boolean, nullable=False),
        Column("completion_txid", String),
    )

    def __init__(self, url: str = config.CAMPAIGN_DB_URL, engine=None,
                 goal: int = config.CAMPAIGN_GOAL_SATOSHIS):
        super().__init__()
        self.engine = engine or _create_engine(url)
        self.metadata.create_all(self.engine)
        with self.engine.begin() as conn:
            if conn.execute(select(self.campaign.c.id)).first() is None:
                conn.execute(insert(self.campaign).values(
                    id=1, goal=goal, raised=0, is_complete=False, completion_txid=None,
                ))

    @staticmethod
    def _record(row) -> InvestorRecord:
        return InvestorRecord(
            identity_key=row.identity_key,
            amount=row.amount,
            timestamp=row.timestamp,
            redeemed=bool(row.redeemed),
        )

    def get(self, identity_key: str) -> InvestorRecord | None:
        with self._lock, self.engine.connect() as conn:
            row = conn.execute(
                select(self.investors).where(self.investors.c.identity_key == identity_key)
            ).first()
        return self._record(row) if row else None

    def put(self, record: InvestorRecord) -> None:
        with self._lock, self.engine.begin() as conn:
            values = dict(amount=record.amount, timestamp=record.timestamp, redeemed=record.redeemed)
            result = conn.execute(
                update(self.investors)
                .where(self.investors.c.identity_key == record.identity_key)
                .values(**values)
            )
            if result.rowcount == 0:
                count = len(conn.execute(select(self.investors.c.identity_key)).all())
                conn.execute(insert(self.investors).values(
                    identity_key=record.identity_key, position=count, **values,
                ))

    def list_investors(self) -> list[InvestorRecord]:
        with self._lock, self.engine.connect() as conn:
            rows = conn.execute(select(self.investors).order_by(self.investors.c.position)).all()
        return [self._record(row) for row in rows]

    def get_campaign(self) -> CampaignState:
        with self._lock, self.engine.connect() as conn:
            row = conn.execute(select(self.campaign).where(self.campaign.c.id == 1)).one()
        return CampaignState(
            goal=row.goal,
            raised=row.raised,
            is_complete=bool(row.is_complete),
            completion_txid=row.completion_txid,
        )

    def put_campaign(self, state: CampaignState) -> None:
        with self._lock, self.engine.begin() as conn:
            conn.execute(
                update(self.campaign).where(self.campaign.c.id == 1).values(
                    goal=state.goal,
                    raised=state.raised,
                    is_complete=state.is_complete,
                    completion_txid=state.completion_txid,
                )
            )


def record_investment(store: InvestorStore, identity_key: str, amount: int,
                      now: int | None = None) -> InvestorRecord:
    """Create the investor on first payment, otherwise accumulate and refresh the timestamp."""
    if amount <= 0:
        raise CampaignStateError("investment amount must be positive")
    now = int(time.time()) if now is None else now

    with store.transaction():
        campaign = store.get_campaign()
        if campaign.is_complete:
            raise CampaignStateError("Crowdfunding already complete")

        existing = store.get(identity_key)
        if existing is None:
            record = InvestorRecord(identity_key=identity_key, amount=amount, timestamp=now)
        else:
            record = replace(existing, amount=existing.amount + amount, timestamp=now)
        store.put(record)
        store.put_campaign(replace(campaign, raised=campaign.raised + amount))

    logger.info(f"Investment recorded: {identity_key[:16]}... +{amount} sats (total {record.amount})")
    return record


def mark_redeemed(store: InvestorStore, identity_key: str) -> InvestorRecord:
    """Flip the redemption flag; it flips exactly once."""
    with store.transaction():
        record = store.get(identity_key)
        if record is None:
            raise CampaignStateError(f"unknown investor {identity_key}")
        if record.redeemed:
            raise CampaignStateError(f"investor {identity_key[:16]}... already redeemed")
        record = replace(record, redeemed=True)
        store.put(record)
    return record
