"""
Analytics Engine Module

Pure functions over one identity's transactions: running balance, burn rate,
liquidity projection, category distribution and dispersion statistics. No
function here reads storage, mutates its inputs or keeps state, so results
are identical for identical input and safe to compute from any thread.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from .models import Identity, Role, Transaction, TransactionCategory, TransactionKind

ZERO = Decimal('0')
ONE_HUNDRED = Decimal('100')
SECONDS_PER_DAY = Decimal('86400')


@dataclass(frozen=True)
class BalancePoint:
    timestamp: datetime
    balance: Decimal


@dataclass(frozen=True)
class DispersionStats:
    """Mean, median and population standard deviation of amounts"""
    mean: Decimal
    median: Decimal
    std_dev: Decimal
    count: int


@dataclass(frozen=True)
class FiscalReport:
    balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    burn_rate: Decimal
    liquidity_index: Decimal
    category_totals: Dict[TransactionCategory, Decimal]
    category_distribution: Dict[TransactionCategory, Decimal]
    running_balance: List[BalancePoint]
    stats: DispersionStats


@dataclass(frozen=True)
class MemberSummary:
    identity_id: str
    display_name: str
    balance: Decimal
    total_credits: Decimal
    total_debits: Decimal


@dataclass(frozen=True)
class ClusterOverview:
    members: List[MemberSummary] = field(default_factory=list)
    total_liquidity: Decimal = ZERO


def _total(transactions: Iterable[Transaction], kind: TransactionKind) -> Decimal:
    return sum((tx.amount for tx in transactions if tx.kind == kind), ZERO)


def running_balance(transactions: Sequence[Transaction]) -> List[BalancePoint]:
    """
    Balance after each transaction, in ascending timestamp order.

    sorted() is stable, so transactions sharing a timestamp keep their
    original relative order.
    """
    points = []
    balance = ZERO
    for tx in sorted(transactions, key=lambda t: t.timestamp):
        balance += tx.signed_amount
        points.append(BalancePoint(tx.timestamp, balance))
    return points


def burn_rate(transactions: Sequence[Transaction], now: Optional[datetime] = None) -> Decimal:
    """
    Average daily debit outflow since the first transaction.

    The elapsed time is floored at one day so same-day activity does not
    blow up the rate.
    """
    if not transactions:
        return ZERO
    now = now or datetime.now(timezone.utc)
    first = min(tx.timestamp for tx in transactions)
    days = Decimal(str((now - first).total_seconds())) / SECONDS_PER_DAY
    return _total(transactions, TransactionKind.DEBIT) / max(Decimal('1'), days)


def liquidity_index(balance: Decimal, rate: Decimal) -> Decimal:
    """Days the balance lasts at the given burn rate; 0 when either is not positive"""
    if balance > 0 and rate > 0:
        return balance / rate
    return ZERO


def category_totals(transactions: Iterable[Transaction]) -> Dict[TransactionCategory, Decimal]:
    """Debit totals per category, omitting categories without debits"""
    totals = {category: ZERO for category in TransactionCategory}
    for tx in transactions:
        if tx.kind == TransactionKind.DEBIT:
            totals[tx.category] += tx.amount
    return {category: total for category, total in totals.items() if total > 0}


def category_distribution(transactions: Iterable[Transaction]) -> Dict[TransactionCategory, Decimal]:
    """Percentage share of total debits per category; empty with no debits"""
    totals = category_totals(transactions)
    total_debits = sum(totals.values(), ZERO)
    if total_debits == 0:
        return {}
    return {category: total / total_debits * ONE_HUNDRED
            for category, total in totals.items()}


def dispersion(transactions: Sequence[Transaction]) -> DispersionStats:
    """
    Dispersion of all amounts, credits and debits alike.

    Mean and variance come from one pass accumulating the sum and the sum of
    squares. The median is taken from a sorted copy; the input order is left
    untouched.
    """
    count = len(transactions)
    if count == 0:
        return DispersionStats(ZERO, ZERO, ZERO, 0)

    total = ZERO
    total_sq = ZERO
    for tx in transactions:
        total += tx.amount
        total_sq += tx.amount * tx.amount

    n = Decimal(count)
    mean = total / n
    variance = max(ZERO, total_sq / n - mean * mean)

    ordered = sorted(tx.amount for tx in transactions)
    middle = count // 2
    if count % 2 == 0:
        median = (ordered[middle - 1] + ordered[middle]) / 2
    else:
        median = ordered[middle]

    return DispersionStats(mean, median, variance.sqrt(), count)


def build_report(transactions: Sequence[Transaction], balance: Decimal,
                 now: Optional[datetime] = None) -> FiscalReport:
    """Bundle every metric for one identity's transactions"""
    rate = burn_rate(transactions, now)
    return FiscalReport(
        balance=balance,
        total_credits=_total(transactions, TransactionKind.CREDIT),
        total_debits=_total(transactions, TransactionKind.DEBIT),
        burn_rate=rate,
        liquidity_index=liquidity_index(balance, rate),
        category_totals=category_totals(transactions),
        category_distribution=category_distribution(transactions),
        running_balance=running_balance(transactions),
        stats=dispersion(transactions)
    )


def cluster_overview(identities: Iterable[Identity],
                     transactions: Sequence[Transaction]) -> ClusterOverview:
    """Per-member balances and the cluster's total member liquidity"""
    members = []
    for identity in identities:
        if identity.role != Role.MEMBER:
            continue
        owned = [tx for tx in transactions if tx.identity_id == identity.id]
        credits = _total(owned, TransactionKind.CREDIT)
        debits = _total(owned, TransactionKind.DEBIT)
        members.append(MemberSummary(
            identity_id=identity.id,
            display_name=identity.display_name,
            balance=credits - debits,
            total_credits=credits,
            total_debits=debits
        ))
    return ClusterOverview(
        members=members,
        total_liquidity=sum((m.balance for m in members), ZERO)
    )
