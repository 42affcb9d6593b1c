"""
Narrative Insight Client Module

REST client for an optional narrative insight service. Summaries are
best-effort annotations: any failure degrades to a static placeholder and
never affects the ledger's own figures.
"""

import httpx
import logging
import time
from decimal import Decimal
from typing import Optional, Sequence

from .models import Transaction, TransactionKind

logger = logging.getLogger("family_ledger.insights")

INSIGHT_PLACEHOLDER = "Insight unavailable."
RECENT_ACTIVITY_LIMIT = 5


class InsightClient:
    """REST client for the narrative insight service"""

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 5.0,
        api_key: Optional[str] = None,
        enabled: bool = True,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self.enabled = enabled and bool(self.base_url)
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def summarize(self, transactions: Sequence[Transaction], balance: Decimal) -> str:
        """Summarize recent activity, or return INSIGHT_PLACEHOLDER"""
        if not self.enabled:
            return INSIGHT_PLACEHOLDER

        try:
            start = time.time()

            headers = {}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"

            recent = sorted(transactions, key=lambda t: t.timestamp, reverse=True)
            payload = {
                "balance": str(balance),
                "activity": [tx.to_dict() for tx in recent[:RECENT_ACTIVITY_LIMIT]],
            }

            response = self._client.post(
                f"{self.base_url}/summarize",
                json=payload,
                headers=headers
            )

            latency_ms = (time.time() - start) * 1000

            if response.status_code == 200:
                text = (response.json().get("text") or "").strip()
                if text:
                    logger.debug(f"Insight generated in {latency_ms:.0f}ms")
                    return text
                logger.warning("Insight service returned an empty summary")
            else:
                logger.warning(f"Insight service returned {response.status_code}")

        except Exception as e:
            logger.warning(f"Insight service call failed: {e}")

        return INSIGHT_PLACEHOLDER

    def close(self):
        """Close the HTTP client"""
        self._client.close()


class MockInsightClient(InsightClient):
    """Offline client that summarizes from the figures alone"""

    def __init__(self, **kwargs):
        super().__init__(base_url="http://insights.invalid", **kwargs)

    def summarize(self, transactions: Sequence[Transaction], balance: Decimal) -> str:
        debits = [tx for tx in transactions if tx.kind == TransactionKind.DEBIT]
        if not debits:
            return f"Balance {balance}. No spending recorded yet."
        largest = max(debits, key=lambda tx: tx.amount)
        return (f"Balance {balance}. Largest outflow: {largest.amount} "
                f"on {largest.category.value}.")
