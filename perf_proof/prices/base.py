"""
Price provider contract.

Every price source (product database, live HTTP API, synthetic demo series)
implements ``PriceProvider``. The evaluator and backfill only ever talk to
this interface, so swapping sources never touches evaluation logic.

Error contract:
  - Unknown ticker / no data: ``get_price_history`` returns ``[]``.
  - Transient failure (network, timeout, 5xx, unreadable payload): raise
    ``PriceProviderError``. The evaluator treats that as "try again next
    run", never as terminal missing data.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime


class PriceProviderError(RuntimeError):
    """A price lookup failed for reasons that may not persist (network, timeout, 5xx)."""


@dataclass(frozen=True)
class PricePoint:
    """One observed price.

    Attributes:
        timestamp: Timezone-aware UTC instant of the observation.
        price: Price in the instrument's quote currency.
    """

    timestamp: datetime
    price: float


class PriceProvider(abc.ABC):
    """Abstract source of current and historical prices."""

    #: Short identifier used in logs and run summaries.
    name: str = "base"

    @abc.abstractmethod
    def get_price_history(self, ticker: str, days: int) -> list[PricePoint]:
        """Return observations from the last ``days`` days, oldest first.

        Raises:
            PriceProviderError: On a transient failure.
        """

    @abc.abstractmethod
    def get_current_price(self, ticker: str) -> float:
        """Return the latest known price.

        Raises:
            PriceProviderError: If no price can be obtained.
        """

    def close(self) -> None:
        """Release any held resources. No-op by default."""
