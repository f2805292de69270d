"""Composition root: builds every service once and owns their background loops."""

import asyncio
import logging
from collections.abc import Coroutine
from datetime import timedelta
from typing import Any

from cropcare.api.backend import Backend, SupabaseBackend
from cropcare.api.functions import FunctionsClient
from cropcare.config import Config, load_config
from cropcare.core.timeutils import Clock, now_ms
from cropcare.media.upload import ImageUploader
from cropcare.models.media import CompressionOptions
from cropcare.services.analysis import AnalysisPipeline, AnalysisRepository
from cropcare.services.chat import AssistantChannel
from cropcare.services.preferences import PreferencesService
from cropcare.services.translation import Translator
from cropcare.services.weather import WeatherService
from cropcare.storage.cache import LocalCache
from cropcare.storage.queue import PendingQueue
from cropcare.storage.translations import TranslationStore
from cropcare.sync.dispatch import OperationDispatcher
from cropcare.sync.network import ConnectivityEvent, NetworkMonitor
from cropcare.sync.reconciler import SyncReconciler

logger = logging.getLogger(__name__)


class CropCareApp:
    """One instance of each service, wired together.

    Every offline-to-online transition starts exactly one drain of the pending
    queue.
    """

    def __init__(
        self,
        config: Config,
        backend: Backend,
        functions: FunctionsClient,
        monitor: NetworkMonitor | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.config = config
        self.backend = backend
        self.functions = functions
        self.monitor = monitor or NetworkMonitor()
        user_id = config.user_id

        self.cache = LocalCache(
            config.data_dir,
            size_limit=config.storage_size_limit,
            clock=clock,
            default_ttl=timedelta(days=config.cache_ttl_days),
        )
        self.queue = PendingQueue(config.data_dir, size_limit=config.storage_size_limit, clock=clock)
        self.translations = TranslationStore(
            config.data_dir, max_entries=config.translation_cache_size, size_limit=config.storage_size_limit, clock=clock
        )

        self.uploader = ImageUploader(
            backend,
            CompressionOptions(max_size_mb=config.image_max_size_mb, max_dimension=config.image_max_dimension),
            signed_url_ttl=config.signed_url_ttl,
            clock=clock,
        )
        self.pipeline = AnalysisPipeline(
            backend, functions, self.uploader, self.queue, self.cache, self.monitor,
            user_id=user_id, language=config.language, clock=clock,
        )
        self.analyses = AnalysisRepository(backend, self.cache, self.monitor, self.queue)
        self.dispatcher = OperationDispatcher(backend, submit_analysis=self.pipeline.submit_queued)
        self.reconciler = SyncReconciler(
            self.queue, self.cache, self.dispatcher, backend,
            monitor=self.monitor, user_id=user_id, max_retries=config.max_sync_retries,
        )
        self.chat = AssistantChannel(
            functions, backend, self.cache, self.queue, self.monitor,
            user_id=user_id,
            language=config.language,
            sent_delay=config.delivery_sent_delay,
            delivered_delay=config.delivery_delivered_delay,
            clock=clock,
        )
        self.translator = Translator(functions, self.translations, self.monitor)
        self.preferences = PreferencesService(backend, self.cache, self.queue, self.monitor)
        self.weather = WeatherService(functions, self.cache, self.monitor)

        self._loops: set[asyncio.Task] = set()
        self._jobs: set[asyncio.Task] = set()
        self._remove_listener = self.monitor.add_listener(self._on_connectivity)

    @classmethod
    async def from_config(cls, config: Config | None = None) -> "CropCareApp":
        """Connect to the configured backend.

        Raises:
            ConfigurationError: If the backend URL or key is missing
        """
        config = config or load_config()
        backend = await SupabaseBackend.connect(config)
        functions = FunctionsClient.from_config(config)
        monitor = NetworkMonitor(
            probe_url=f"{config.require_url().rstrip('/')}/rest/v1/",
            probe_headers={"apikey": config.require_anon_key()},
        )
        return cls(config, backend, functions, monitor)

    def _on_connectivity(self, event: ConnectivityEvent) -> None:
        if event == ConnectivityEvent.ONLINE:
            logger.info("Connection restored, triggering sync")
            self._spawn(self.reconciler.drain(), self._jobs)

    def _spawn(self, coro: Coroutine[Any, Any, Any], group: set[asyncio.Task]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        group.add(task)
        task.add_done_callback(group.discard)
        task.add_done_callback(self._report)
        return task

    @staticmethod
    def _report(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()}")

    async def start(self) -> None:
        """Start the sweeper, connectivity watcher and refresher, then sync once."""
        self._spawn(self.cache.run_sweeper(self.config.cache_sweep_interval), self._loops)
        self._spawn(self.reconciler.run_refresher(self.config.cache_refresh_interval), self._loops)
        if self.monitor.probe_url:
            self._spawn(self.monitor.watch(self.config.connectivity_check_interval), self._loops)
        if self.monitor.is_online:
            self._spawn(self.reconciler.drain(), self._jobs)
            self._spawn(self.reconciler.refresh_caches(), self._jobs)

    async def wait_idle(self) -> None:
        """Wait for one-off jobs (drains, refreshes) to finish."""
        while self._jobs:
            await asyncio.gather(*list(self._jobs), return_exceptions=True)

    async def aclose(self) -> None:
        self._remove_listener()
        tasks = [*self._loops, *self._jobs]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self.chat.aclose()
        await self.monitor.aclose()
        await self.functions.aclose()
        await self.backend.aclose()
        for store in (self.cache, self.queue, self.translations):
            store.close()

    async def __aenter__(self) -> "CropCareApp":
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
