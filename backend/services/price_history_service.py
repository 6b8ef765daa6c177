"""Price store: daily bars, gap detection, estimation and backfill.

Stored rows carry a quality score. Real oracle or manual data is 1.0;
estimates derived from neighbouring real rows score lower:

- forward fill from the last earlier price: 0.7
- backward fill from the first later price: 0.7
- linear interpolation between two real prices: 0.5

A write never replaces a row of higher rank, where rank is quality and
then source priority (manual > provider > estimate).
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from integrations.exceptions import ProviderError
from integrations.market_data_protocol import PriceResult
from models import PriceHistory
from models.price_history import (
    QUALITY_FILL,
    QUALITY_INTERPOLATED,
    QUALITY_NONE,
    QUALITY_REAL,
    source_priority,
)
from services.market_data_service import MarketDataService
from services.rate_limit import CancellationToken, SlidingWindowRateLimiter
from services.retry import RetryPolicy, with_retry
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)


@dataclass
class PricePoint:
    symbol: str
    price_date: date
    price: Optional[Decimal]
    quality: float
    source: Optional[str]


@dataclass
class PriceGap:
    symbol: str
    start_date: date
    end_date: date
    missing_days: int


@dataclass
class UpsertStats:
    inserted: int = 0
    replaced: int = 0
    skipped: int = 0


@dataclass
class SymbolBackfill:
    symbol: str
    gaps: list[PriceGap]
    fetched: int = 0
    inserted: int = 0
    replaced: int = 0


@dataclass
class BackfillReport:
    requested: list[str]
    processed: list[str] = field(default_factory=list)
    up_to_date: list[str] = field(default_factory=list)
    results: dict[str, SymbolBackfill] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def remaining(self) -> list[str]:
        """Symbols with gaps that were not attempted (cancellation)."""
        done = set(self.processed) | set(self.up_to_date)
        return [s for s in self.requested if s not in done]


def is_weekday(d: date) -> bool:
    return d.weekday() < 5


def _daterange(start: date, end: date) -> Iterable[date]:
    d = start
    while d <= end:
        yield d
        d += timedelta(days=1)


def _next_weekday(d: date) -> date:
    d += timedelta(days=1)
    while not is_weekday(d):
        d += timedelta(days=1)
    return d


class PriceHistoryService:
    """Reads, writes, estimates and backfills daily prices."""

    def __init__(self, market_data: Optional[MarketDataService] = None):
        self._market_data = market_data

    @property
    def market_data(self) -> MarketDataService:
        if self._market_data is None:
            self._market_data = MarketDataService()
        return self._market_data

    # --- Reads ---

    @staticmethod
    def _real_rows(db: Session, symbol: str):
        return db.query(PriceHistory).filter(
            PriceHistory.symbol == symbol, PriceHistory.quality >= QUALITY_REAL
        )

    @staticmethod
    def get_latest(db: Session, symbol: str) -> Optional[PriceHistory]:
        """Most recent real (quality 1.0) row for ``symbol``."""
        return (
            PriceHistoryService._real_rows(db, normalize_symbol(symbol))
            .order_by(PriceHistory.price_date.desc())
            .first()
        )

    @staticmethod
    def get_price(db: Session, symbol: str, on_date: date) -> PricePoint:
        """Price for ``symbol`` on ``on_date``, estimating when no row exists.

        Estimates are computed from real rows only and are not persisted.
        """
        symbol = normalize_symbol(symbol)
        exact = (
            db.query(PriceHistory)
            .filter(PriceHistory.symbol == symbol, PriceHistory.price_date == on_date)
            .first()
        )
        if exact is not None:
            return PricePoint(symbol, on_date, Decimal(exact.close_price), exact.quality, exact.source)

        before = (
            PriceHistoryService._real_rows(db, symbol)
            .filter(PriceHistory.price_date < on_date)
            .order_by(PriceHistory.price_date.desc())
            .first()
        )
        after = (
            PriceHistoryService._real_rows(db, symbol)
            .filter(PriceHistory.price_date > on_date)
            .order_by(PriceHistory.price_date.asc())
            .first()
        )

        if before is not None and after is not None:
            before_price = Decimal(before.close_price)
            after_price = Decimal(after.close_price)
            total_days = (after.price_date - before.price_date).days
            elapsed = (on_date - before.price_date).days
            price = before_price + (after_price - before_price) * Decimal(elapsed) / Decimal(total_days)
            return PricePoint(symbol, on_date, price, QUALITY_INTERPOLATED, "interpolated_linear")
        if before is not None:
            return PricePoint(symbol, on_date, Decimal(before.close_price), QUALITY_FILL, "interpolated_forward")
        if after is not None:
            return PricePoint(symbol, on_date, Decimal(after.close_price), QUALITY_FILL, "interpolated_backward")
        return PricePoint(symbol, on_date, None, QUALITY_NONE, None)

    @staticmethod
    def find_gaps(db: Session, symbol: str, start_date: date, end_date: date) -> list[PriceGap]:
        """Weekday ranges in [start_date, end_date] lacking real data.

        Weekends are never gaps and do not split a range, so a missing
        Friday and the following Monday form one gap.
        """
        symbol = normalize_symbol(symbol)
        have = {
            row.price_date
            for row in PriceHistoryService._real_rows(db, symbol)
            .filter(PriceHistory.price_date >= start_date, PriceHistory.price_date <= end_date)
            .all()
        }

        gaps: list[PriceGap] = []
        current: Optional[PriceGap] = None
        for d in _daterange(start_date, end_date):
            if not is_weekday(d) or d in have:
                if d in have:
                    current = None
                continue
            if current is not None and _next_weekday(current.end_date) == d:
                current.end_date = d
                current.missing_days += 1
            else:
                current = PriceGap(symbol, d, d, 1)
                gaps.append(current)
        return gaps

    # --- Writes ---

    @staticmethod
    def upsert_prices(
        db: Session, bars: Iterable[PriceResult], quality: float = QUALITY_REAL
    ) -> UpsertStats:
        """Insert or replace bars keyed by (symbol, price_date).

        An existing row is replaced only when the incoming (quality,
        source priority) is at least as high as the stored one.
        """
        stats = UpsertStats()
        seen: dict[tuple[str, date], PriceHistory] = {}

        for bar in bars:
            symbol = normalize_symbol(bar.symbol)
            key = (symbol, bar.price_date)
            row = seen.get(key)
            if row is None:
                row = (
                    db.query(PriceHistory)
                    .filter(PriceHistory.symbol == symbol, PriceHistory.price_date == bar.price_date)
                    .first()
                )

            if row is None:
                row = PriceHistory(symbol=symbol, price_date=bar.price_date)
                db.add(row)
                stats.inserted += 1
            elif (quality, source_priority(bar.source)) >= (row.quality, source_priority(row.source)):
                stats.replaced += 1
            else:
                stats.skipped += 1
                seen[key] = row
                continue

            row.close_price = bar.close_price
            row.open_price = bar.open_price
            row.high_price = bar.high_price
            row.low_price = bar.low_price
            row.volume = bar.volume
            row.source = bar.source
            row.quality = quality
            seen[key] = row

        db.flush()
        return stats

    @staticmethod
    def fill_gaps(db: Session, symbol: str, start_date: date, end_date: date) -> int:
        """Persist estimated rows for every gap weekday that can be estimated.

        Real data written later replaces these rows by rank.
        """
        symbol = normalize_symbol(symbol)
        estimates: list[tuple[PriceResult, float]] = []
        for gap in PriceHistoryService.find_gaps(db, symbol, start_date, end_date):
            for d in _daterange(gap.start_date, gap.end_date):
                if not is_weekday(d):
                    continue
                point = PriceHistoryService.get_price(db, symbol, d)
                if point.price is None or point.quality >= QUALITY_REAL:
                    continue
                estimates.append(
                    (PriceResult(symbol=symbol, price_date=d, close_price=point.price, source=point.source), point.quality)
                )

        written = 0
        for bar, quality in estimates:
            stats = PriceHistoryService.upsert_prices(db, [bar], quality=quality)
            written += stats.inserted + stats.replaced
        logger.info("Filled %d estimated prices for %s", written, symbol)
        return written

    # --- Backfill ---

    def backfill(
        self,
        db: Session,
        symbols: list[str],
        start_date: date,
        end_date: date,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        cancel_token: Optional[CancellationToken] = None,
        crypto_symbols: Optional[set[str]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_symbols: Optional[int] = None,
    ) -> BackfillReport:
        """Fetch missing real prices from the oracle, one symbol at a time.

        Symbols whose newest gap is most recent go first. Every oracle
        call takes a rate-limiter slot, and the cancellation token is
        checked before each symbol; a cancelled run returns what it has.
        Provider failures are recorded per symbol and do not stop the run.
        """
        requested = list(dict.fromkeys(normalize_symbol(s) for s in symbols))
        report = BackfillReport(requested=requested)

        pending: list[SymbolBackfill] = []
        for symbol in requested:
            gaps = self.find_gaps(db, symbol, start_date, end_date)
            if gaps:
                pending.append(SymbolBackfill(symbol=symbol, gaps=gaps))
            else:
                report.up_to_date.append(symbol)

        pending.sort(key=lambda item: item.gaps[-1].end_date, reverse=True)
        if max_symbols is not None:
            pending = pending[:max_symbols]

        for item in pending:
            if cancel_token is not None and cancel_token.cancelled:
                report.cancelled = True
                logger.info(
                    "Backfill cancelled after %d of %d symbols", len(report.processed), len(pending)
                )
                break

            fetch_start = item.gaps[0].start_date
            fetch_end = item.gaps[-1].end_date

            def fetch(symbol=item.symbol, start=fetch_start, end=fetch_end):
                if rate_limiter is not None:
                    rate_limiter.acquire()
                return self.market_data.get_price_history([symbol], start, end, crypto_symbols)

            report.processed.append(item.symbol)
            report.results[item.symbol] = item

            if retry_policy is not None:
                outcome = with_retry(fetch, retry_policy, description=f"price backfill for {item.symbol}")
                if not outcome.success:
                    report.errors[item.symbol] = str(outcome.error)
                    continue
                fetched = outcome.result
            else:
                try:
                    fetched = fetch()
                except ProviderError as e:
                    logger.warning("Price backfill failed for %s: %s", item.symbol, e)
                    report.errors[item.symbol] = str(e)
                    continue

            bars = fetched.get(item.symbol, [])
            stats = self.upsert_prices(db, bars, quality=QUALITY_REAL)
            item.fetched = len(bars)
            item.inserted = stats.inserted
            item.replaced = stats.replaced
            logger.info(
                "Backfilled %s: %d bars fetched, %d inserted, %d replaced",
                item.symbol, item.fetched, item.inserted, item.replaced,
            )

        return report
