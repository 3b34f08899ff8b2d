"""Probe interface contract for vacancy searches.

A probe performs one search against the external vacancy system and reports
``found`` (with a screenshot), ``not_found`` or ``failed``.  Subclass
:class:`BaseProbe` and implement :meth:`~BaseProbe.run_search`; callers use
:meth:`~BaseProbe.search`, which never raises for probe faults.

Design decisions
----------------
* **Abstract base class** rather than a ``Protocol``: the fault-to-result
  mapping in :meth:`BaseProbe.search` and the async context manager are
  shared by every probe.
* **``name`` as a class variable** so log lines and errors can identify the
  probe without constructing it.

Typical usage::

    class MyProbe(BaseProbe):
        name = "mine"

        async def run_search(self, criteria, headless):
            return ProbeResult.not_found()

    async with MyProbe() as probe:
        result = await probe.search(criteria, headless=True)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from types import TracebackType
from typing import ClassVar

from jkkwatch.core.exceptions import ProbeError
from jkkwatch.core.models import ProbeResult, SearchCriteria

__all__ = ["BaseProbe"]

logger = logging.getLogger(__name__)


class BaseProbe(ABC):
    """Abstract base for vacancy probes.

    Attributes:
        name: Short identifier used in logs and :class:`ProbeError` messages.
    """

    name: ClassVar[str]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by this probe.  No-op by default."""

    async def __aenter__(self) -> BaseProbe:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    async def search(self, criteria: SearchCriteria, headless: bool = True) -> ProbeResult:
        """Run one search and map every fault to a ``failed`` result.

        Task cancellation is not a fault and propagates unchanged.

        Args:
            criteria: What to search for.
            headless: Run the browser without a visible window.

        Returns:
            The :class:`ProbeResult` of the search.
        """
        try:
            return await self.run_search(criteria, headless)
        except ProbeError as exc:
            logger.warning("Probe %s failed: %s", self.name, exc)
            return ProbeResult.failed(str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error("Probe %s raised unexpectedly: %s", self.name, exc, exc_info=True)
            return ProbeResult.failed(f"[{self.name}] {type(exc).__name__}: {exc}")

    @abstractmethod
    async def run_search(self, criteria: SearchCriteria, headless: bool) -> ProbeResult:
        """Perform the search.

        Implementations may raise; :meth:`search` converts the exception into
        a ``failed`` result.

        Raises:
            :class:`~jkkwatch.core.exceptions.ProbeError`: for failures the
            probe can describe (page layout changed, navigation timeout).
        """
