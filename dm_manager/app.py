"""Application bootstrap and lifecycle management."""

from typing import Protocol

import httpx

from .agent import AgentInvoker
from .config import Settings, resolve_db_path
from .debounce import DebounceCoordinator, IThreadProcessor, ThreadProcessor
from .dispatch import (
    DelayedDispatcher,
    DispatchTokenSettings,
    HttpTaskDelivery,
    LocalTaskDelivery,
    TaskRunner,
)
from .ingress import WebhookIngress
from .llm import ILLMProvider, create_llm_provider
from .logging_config import get_logger
from .storage import IStorage, Storage
from .tools import (
    InstagramClient,
    ScheduleProvider,
    TelegramNotifier,
    ToolCatalog,
    get_tool_catalog,
    reset_tool_catalog,
)
from .tracker import ITracker, Tracker

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Clear all stored state."""
        ...

    async def reset_thread(self, thread_id: str) -> None:
        """Forget one conversation and its user profile."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        settings: Settings | None = None,
        db_path: str | None = None,
        llm_provider: ILLMProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        run_task_runner: bool = True,
    ):
        self._settings = settings or Settings.from_env()
        env_db_path = self._settings.database_url if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._injected_llm = llm_provider
        self._http_client = http_client
        self._run_task_runner = run_task_runner

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._tracker: ITracker | None = None
        self._coordinator: DebounceCoordinator | None = None
        self._dispatcher: DelayedDispatcher | None = None
        self._instagram: InstagramClient | None = None
        self._notifier: TelegramNotifier | None = None
        self._schedule: ScheduleProvider | None = None
        self._catalog: ToolCatalog | None = None
        self._llm: ILLMProvider | None = None
        self._processor: IThreadProcessor | None = None
        self._ingress: WebhookIngress | None = None
        self._delivery: LocalTaskDelivery | HttpTaskDelivery | None = None
        self._runner: TaskRunner | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")
        settings = self._settings

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. Tracker (depends on Storage)
        self._tracker = Tracker(self._storage)

        # 3. Debounce coordination (depends on Storage)
        self._coordinator = DebounceCoordinator(self._storage)
        self._dispatcher = DelayedDispatcher(
            self._storage,
            delay_seconds=settings.debounce_delay_seconds,
            max_delay_seconds=settings.debounce_max_delay_seconds,
        )

        # 4. External clients
        self._instagram = InstagramClient(
            access_token=settings.instagram_access_token,
            page_id=settings.instagram_page_id,
            client=self._http_client,
        )
        self._notifier = TelegramNotifier(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
            client=self._http_client,
        )
        self._schedule = ScheduleProvider(
            settings.schedule_provider_url, client=self._http_client
        )

        # 5. Tools (depends on Storage + clients)
        self._catalog = get_tool_catalog(
            lambda: ToolCatalog(
                storage=self._storage,
                instagram=self._instagram,
                notifier=self._notifier,
                schedule=self._schedule,
                cooldown_days=settings.notification_cooldown_days,
                coordinator_name=settings.net_session_coordinator,
            )
        )

        # 6. LLMProvider (no internal dependencies)
        self._llm = self._injected_llm or create_llm_provider(
            settings.ai_provider, settings.ai_model
        )
        logger.info("LLM provider initialized")

        # 7. Agent and processor
        agent = AgentInvoker(
            llm_provider=self._llm,
            catalog=self._catalog,
            tracker=self._tracker,
            max_turns=settings.agent_max_turns,
            coordinator_name=settings.net_session_coordinator,
        )
        self._processor = ThreadProcessor(
            coordinator=self._coordinator,
            dispatcher=self._dispatcher,
            instagram=self._instagram,
            agent=agent,
            storage=self._storage,
            tracker=self._tracker,
            history_limit=settings.history_limit,
        )

        # 8. Ingress
        self._ingress = WebhookIngress(
            storage=self._storage,
            dispatcher=self._dispatcher,
            tracker=self._tracker,
            page_id=settings.instagram_page_id,
            test_mode_sender_id=settings.test_mode_sender_id,
            reset_keyword=settings.reset_keyword,
        )

        # 9. Task runner (HTTP delivery when a target URL is configured)
        if settings.task_target_url:
            self._delivery = HttpTaskDelivery(
                settings.task_target_url,
                self.dispatch_token_settings,
                timeout=settings.task_timeout_seconds + 10,
            )
        else:
            self._delivery = LocalTaskDelivery(self._processor)
        self._runner = TaskRunner(
            self._storage,
            self._delivery,
            tracker=self._tracker,
            max_attempts=settings.task_max_attempts,
            timeout_seconds=settings.task_timeout_seconds,
            poll_interval_seconds=settings.task_poll_interval_seconds,
            concurrency=settings.task_concurrency,
        )
        if self._run_task_runner:
            await self._runner.start()

        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._runner:
            await self._runner.stop()
        if isinstance(self._delivery, HttpTaskDelivery):
            await self._delivery.aclose()
        reset_tool_catalog()
        for client in (self._schedule, self._notifier, self._instagram):
            if client:
                await client.aclose()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Clear all stored state, pausing the task runner meanwhile."""
        if self._runner and self._run_task_runner:
            await self._runner.stop()

        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")

        if self._runner and self._run_task_runner:
            await self._runner.start()
        logger.info("Reset complete")

    async def reset_thread(self, thread_id: str) -> None:
        await self.storage.delete_thread_data(thread_id)
        await self.tracker.track(
            event_type="thread_reset",
            actor="control",
            data={"source": "api"},
            thread_id=thread_id,
        )
        logger.info("Thread reset by operator", extra={"context": {"thread_id": thread_id}})

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def dispatch_token_settings(self) -> DispatchTokenSettings:
        return DispatchTokenSettings.from_settings(self._settings)

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def tracker(self) -> ITracker:
        if not self._tracker:
            raise RuntimeError("Application not started")
        return self._tracker

    @property
    def ingress(self) -> WebhookIngress:
        if not self._ingress:
            raise RuntimeError("Application not started")
        return self._ingress

    @property
    def processor(self) -> IThreadProcessor:
        if not self._processor:
            raise RuntimeError("Application not started")
        return self._processor

    @property
    def runner(self) -> TaskRunner:
        if not self._runner:
            raise RuntimeError("Application not started")
        return self._runner
