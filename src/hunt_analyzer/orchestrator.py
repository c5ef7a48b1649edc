from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

from hunt_analyzer.analysis import ProductAnalyzer
from hunt_analyzer.config import Settings
from hunt_analyzer.errors import (
    AnalysisTimeout,
    AnalyzerError,
    CredentialUnavailable,
    FetchEmpty,
    FetchFailed,
    FetchTimeout,
)
from hunt_analyzer.logging_utils import log_event
from hunt_analyzer.models import Analysis, AnalysisFailure, AnalyzedProduct, Product, RunSummary
from hunt_analyzer.results import LatestResults

logger = logging.getLogger(__name__)

Emit = Callable[[str, dict[str, Any]], Any]


class CredentialSource(Protocol):
    async def get_credential(self) -> Optional[str]: ...


class ListingSource(Protocol):
    async def fetch(self, credential: Optional[str], count: int) -> list[Product]: ...


class StreamingOrchestrator:
    """Fetches a batch of trending products and analyzes them one at a time.

    ``run`` reports through ``emit(kind, payload)`` with the event kinds
    ``status``, ``progress``, ``product``, ``error`` and ``complete``. Items
    are analyzed strictly in fetch order; a failing or slow item gets an
    ``AnalysisFailure`` attached and the run moves on. Only a missing
    credential or a failed/empty fetch ends a run early, and such a run never
    emits ``complete``.
    """

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialSource,
        source: ListingSource,
        analyzer: ProductAnalyzer,
        results: LatestResults,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.credentials = credentials
        self.source = source
        self.analyzer = analyzer
        self.results = results
        self._sleep = sleep

    def stream_count(self, requested: Optional[int] = None) -> int:
        return self._capped(requested, self.settings.stream_max_items)

    def bounded_count(self, requested: Optional[int] = None) -> int:
        return self._capped(requested, self.settings.quick_max_items)

    @staticmethod
    def _capped(requested: Optional[int], cap: int) -> int:
        if requested is None:
            return cap
        return max(1, min(int(requested), cap))

    async def _emit(self, emit: Emit, kind: str, payload: dict[str, Any]) -> None:
        try:
            result = emit(kind, payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Failed to deliver %s event", kind)

    async def _error(self, emit: Emit, error: AnalyzerError) -> None:
        log_event(logger, "Run aborted", level=logging.WARNING, code=error.code, reason=error.message)
        await self._emit(emit, "error", {"message": error.message, "code": error.code})

    async def _credential(self) -> Optional[str]:
        try:
            return await self.credentials.get_credential()
        except Exception:
            logger.exception("Credential provider failed")
            return None

    async def _analyze(self, product: Product, timeout: Optional[float]) -> Analysis:
        try:
            if timeout is None:
                return await self.analyzer.analyze(product)
            return await asyncio.wait_for(self.analyzer.analyze(product), timeout=timeout)
        except asyncio.TimeoutError:
            if timeout is None:
                logger.warning("Analysis of %s timed out", product.name)
            else:
                logger.warning("Analysis of %s exceeded %.1fs", product.name, timeout)
            error = AnalysisTimeout()
            return AnalysisFailure(error=error.message, error_type=error.code)
        except AnalyzerError as exc:
            logger.error("Error analyzing product %s: %s", product.name, exc.message)
            return AnalysisFailure(error=exc.message, error_type=exc.code)
        except Exception as exc:
            logger.exception("Unexpected error analyzing product %s", product.name)
            return AnalysisFailure(error=str(exc) or exc.__class__.__name__)

    async def run(
        self,
        emit: Emit,
        requested_count: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunSummary:
        run_id = self.results.next_run_id()
        try:
            return await self._run(run_id, emit, self.stream_count(requested_count), cancel_event)
        except Exception as exc:
            logger.exception("Streaming analysis error")
            await self._emit(emit, "error", {"message": str(exc) or "Unexpected error", "code": "internal-error"})
            return RunSummary.empty(run_id)

    async def _run(
        self,
        run_id: str,
        emit: Emit,
        count: int,
        cancel_event: Optional[asyncio.Event],
    ) -> RunSummary:
        credential = await self._credential()
        if not credential:
            await self._error(emit, CredentialUnavailable())
            return RunSummary.empty(run_id)

        log_event(logger, "Starting streaming analysis", run_id=run_id, requested=count)
        await self._emit(emit, "status", {"message": "Starting analysis...", "step": "init"})
        await self._emit(emit, "status", {"message": "Fetching trending products...", "step": "fetch"})

        try:
            products = await asyncio.wait_for(
                self.source.fetch(credential, count),
                timeout=self.settings.fetch_timeout_sec,
            )
        except asyncio.TimeoutError:
            await self._error(emit, FetchTimeout())
            return RunSummary.empty(run_id)
        except Exception as exc:
            logger.exception("Fetching trending products failed")
            await self._error(emit, FetchFailed(str(exc)))
            return RunSummary.empty(run_id)

        if not products:
            await self._error(emit, FetchEmpty())
            return RunSummary.empty(run_id)

        total = len(products)
        await self._emit(
            emit,
            "status",
            {"message": f"Found {total} products. Starting analysis...", "step": "analyze", "total": total},
        )

        analyzed: list[AnalyzedProduct] = []
        for index, product in enumerate(products, start=1):
            if cancel_event is not None and cancel_event.is_set():
                log_event(logger, "Run cancelled", run_id=run_id, processed=len(analyzed), total=total)
                return RunSummary.build(run_id, analyzed)

            await self._emit(
                emit,
                "progress",
                {"current": index, "total": total, "product": product.name, "message": f"Analyzing {product.name}..."},
            )
            analysis = await self._analyze(product, self.settings.analysis_timeout_sec)
            item = AnalyzedProduct(product=product, analysis=analysis)
            analyzed.append(item)
            await self._emit(emit, "product", item.to_dict())

            if index < total:
                await self._sleep(self.settings.item_delay_sec)

        summary = RunSummary.build(run_id, analyzed)
        # sqlite archive writes stay off the event loop
        await asyncio.to_thread(self.results.publish, summary)
        await self._emit(emit, "complete", summary.to_dict())
        log_event(
            logger,
            "Streaming analysis completed",
            run_id=run_id,
            success_count=summary.success_count,
            error_count=summary.error_count,
        )
        return summary

    async def run_bounded(self, count: Optional[int] = None) -> RunSummary:
        run_id = self.results.next_run_id()
        credential = await self._credential()
        if not credential:
            raise CredentialUnavailable("Authentication required")

        try:
            products = await self.source.fetch(credential, self.bounded_count(count))
        except AnalyzerError:
            raise
        except Exception as exc:
            raise FetchFailed(str(exc)) from exc
        if not products:
            raise FetchEmpty("No products found")

        analyzed: list[AnalyzedProduct] = []
        for product in products:
            analysis = await self._analyze(product, timeout=None)
            analyzed.append(AnalyzedProduct(product=product, analysis=analysis))
        return RunSummary.build(run_id, analyzed)
