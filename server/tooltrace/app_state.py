"""Per-app service container.

Builds every pipeline component from one TraceConfig and owns their
start/stop lifecycle, so each app (and each test) gets isolated state.
"""

from __future__ import annotations

import logging

from .config import TraceConfig
from .sanitizer import Sanitizer
from .services.correlator import CompletionDeduplicator, StartCorrelator
from .services.identity import IdentityResolver, load_agent_name
from .services.ledger import LedgerWriter
from .services.pipeline import TracePipeline
from .sse.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


class TraceState:
    """Holds the service instances for one gateway."""

    def __init__(self, config: TraceConfig) -> None:
        self.config = config
        self.sanitizer = Sanitizer(config.max_string, config.sensitive_keys_re)
        self.correlator = StartCorrelator(cap=config.start_queue_cap, max_age_ms=config.match_window_ms)
        self.resolver = IdentityResolver(
            registry_path=config.session_registry_path,
            meta_path=config.session_meta_path,
            cron_path=config.cron_jobs_path,
            main_session_key=config.main_session_key,
            refresh_seconds=config.refresh_seconds,
            startup_retry_seconds=config.startup_retry_seconds,
            startup_retry_window_seconds=config.startup_retry_window_seconds,
        )
        self.ledger = LedgerWriter(config.ledger_path)
        self.broadcaster = Broadcaster(queue_size=config.subscriber_queue_size)
        # Agent display name: config > IDENTITY.md > agent id
        self.agent_display_name = (
            config.agent_name or load_agent_name(config.identity_path) or config.agent_id
        )
        self.pipeline = TracePipeline(
            sanitizer=self.sanitizer,
            correlator=self.correlator,
            resolver=self.resolver,
            ledger=self.ledger,
            broadcaster=self.broadcaster,
            agent_id=config.agent_id,
            agent_display_name=self.agent_display_name,
            match_window_ms=config.match_window_ms,
            deduplicator=(
                CompletionDeduplicator(cap=config.start_queue_cap, max_age_ms=config.match_window_ms)
                if config.dedupe_completions
                else None
            ),
            max_note_length=config.max_note_length,
            enabled=config.enabled,
        )

    async def start(self) -> None:
        """Create the ledger directory and start the identity refresh tasks."""
        if not self.config.enabled:
            logger.info("tooltrace disabled")
            return
        try:
            self.ledger.ensure_dir()
        except OSError as exc:
            logger.warning("Cannot create ledger directory for %s: %s", self.ledger.path, exc)
        self.resolver.start()
        logger.info("Routes mounted at %s", self.config.path_prefix or "/")
        logger.info("Ledger path: %s", self.ledger.path)

    async def stop(self) -> None:
        """Cancel every scheduled task and end all live streams."""
        await self.resolver.stop()
        self.broadcaster.close_all()
