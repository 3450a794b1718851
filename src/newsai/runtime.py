from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import Config, resolve_llm_api_key
from .http import Fetcher, fetch_url
from .llm.capabilities import LlmCapabilities, SimilarityScorer, TextGenerator, Verifier
from .pipelines import StageContext
from .scheduler import Scheduler
from .storage.base import Store
from .storage.sql import SqlStore
from .ticker import Ticker
from .worker import Dispatcher, build_stage_handlers


@dataclass
class Runtime:
    config: Config
    store: Store
    context: StageContext
    dispatcher: Dispatcher
    scheduler: Scheduler
    logger: logging.Logger

    def stop(self) -> None:
        self.scheduler.stop()
        self.dispatcher.stop()

    def close(self) -> None:
        self.stop()
        if isinstance(self.store, SqlStore):
            self.store.close()


def build_runtime(
    config: Config,
    store: Store | None = None,
    *,
    generator: TextGenerator | None = None,
    scorer: SimilarityScorer | None = None,
    verifier: Verifier | None = None,
    fetcher: Fetcher = fetch_url,
    logger: logging.Logger | None = None,
    dispatcher_ticker: Ticker | None = None,
    scheduler_ticker: Ticker | None = None,
) -> Runtime:
    """Wire stores, capabilities, stages, scheduler and dispatcher together."""
    logger = logger or logging.getLogger("newsai")
    if store is None:
        store = SqlStore.open(config.paths.state_db, max_attempts=config.jobs.max_attempts)
    if generator is None or scorer is None or verifier is None:
        capabilities = LlmCapabilities(
            config.llm, resolve_llm_api_key(), logging.getLogger("newsai.llm")
        )
        generator = generator or capabilities
        scorer = scorer or capabilities
        verifier = verifier or capabilities

    context = StageContext(
        config=config,
        jobs=store,
        sources=store,
        content=store,
        generator=generator,
        scorer=scorer,
        verifier=verifier,
        logger=logging.getLogger("newsai.pipelines"),
        fetcher=fetcher,
    )
    dispatcher = Dispatcher(
        store,
        build_stage_handlers(context),
        logging.getLogger("newsai.worker"),
        batch_size=config.jobs.batch_size,
        poll_interval_seconds=config.jobs.poll_interval_seconds,
        error_backoff_seconds=config.jobs.error_backoff_seconds,
        processing_timeout_seconds=config.jobs.processing_timeout_seconds,
        ticker=dispatcher_ticker,
    )
    scheduler = Scheduler(
        store,
        store,
        store,
        config.scheduler,
        logging.getLogger("newsai.scheduler"),
        ticker=scheduler_ticker,
    )
    return Runtime(
        config=config,
        store=store,
        context=context,
        dispatcher=dispatcher,
        scheduler=scheduler,
        logger=logger,
    )
