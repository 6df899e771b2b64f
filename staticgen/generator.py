"""
Generation run: enumerate, crawl, assemble and publish one static snapshot.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from publishers import build_publishers

from .assembler import OutputAssembler
from .assets import AssetCollector
from .cache import PageCache
from .config import Settings
from .control import CANCEL_KEY, ERROR_NOTIFICATION_KEY, RUNNING_KEY, RUNNING_TTL, STATE_KEY
from .crawler import build_crawler
from .enumerator import UrlEnumerator
from .errors import PublishError, RunCancelled, ValidationError
from .infra.http import HttpClient
from .infra.state import StateStore
from .interfaces import ContentSource, ProgressSink, Publisher
from .models import PublishResult, RunState
from .transformer import PageTransformer


logger = logging.getLogger(__name__)

# progress checkpoints, out of 100
ASSETS_PROGRESS = 81
INCLUDES_PROGRESS = 84
EXCLUDES_PROGRESS = 87
PUBLISH_PROGRESS = 90


class Generator:
    """Runs the whole pipeline once per call to :meth:`run`."""

    def __init__(
        self,
        settings: Settings,
        source: ContentSource,
        state: StateStore,
        log: ProgressSink,
        http: Optional[HttpClient] = None,
        publishers: Optional[List[Publisher]] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.source = source
        self.state = state
        self.log = log
        self.http = http
        self._publishers = publishers
        self._now = now

    # ---------------------------------------------- #
    # Helpers
    async def should_stop(self) -> bool:
        return bool(await self.state.get(CANCEL_KEY))

    async def _check_stop(self, phase: str) -> None:
        if await self.should_stop():
            raise RunCancelled(f"Cancelled before {phase}")

    def commit_message(self) -> str:
        return self.settings.run.commit_message or f"update:{self._now():%Y%m%d_%H%M%S}"

    def build_transformer(self) -> PageTransformer:
        archives = self.settings.archives
        return PageTransformer(
            self.source.site_url(),
            self.source.home_url(),
            relative=self.settings.run.url_mode == "relative",
            tag_archive=archives.tag,
            date_archive=archives.date,
            author_archive=archives.author,
        )

    def build_cache(self) -> Optional[PageCache]:
        if not self.settings.run.cache_enabled:
            return None
        return PageCache(self.settings.run.cache_path, self.source.modified_time)

    # ---------------------------------------------- #
    # Phases
    async def generate_pages(self, assembler: OutputAssembler, transformer: PageTransformer) -> int:
        enumerator = UrlEnumerator(self.source, self.settings, self.log)
        units = enumerator.enumerate()
        self.log.log(f"URLs collected: {len(units)}")

        written = 0
        crawler = build_crawler(
            self.settings,
            transformer=transformer,
            progress=self.log,
            cache=self.build_cache(),
            url_to_content_id=enumerator.url_to_content_id,
            http=self.http,
            should_stop=self.should_stop,
        )
        async with crawler:
            async for page in crawler.crawl(units):
                try:
                    assembler.write_page(page.path, page.body)
                    written += 1
                except OSError as e:
                    self.log.log(f"Failed to write {page.path}: {e}", "error")

        stats = crawler.stats
        self.log.log(
            f"Pages generated: {written} ({stats['fetched']} fetched, "
            f"{stats['cached']} from cache, {stats['failed']} failed)"
        )
        return written

    async def publish(self, assembler: OutputAssembler) -> List[PublishResult]:
        publishers = self._publishers
        if publishers is None:
            publishers = build_publishers(self.settings, self.log, http=self.http, should_stop=self.should_stop)
        if not publishers:
            self.log.log("No publisher enabled, nothing was delivered", "warning")
            return []

        message = self.commit_message()
        span = 100 - PUBLISH_PROGRESS
        results: List[PublishResult] = []
        for index, publisher in enumerate(publishers):
            self.log.update_progress(
                PUBLISH_PROGRESS + span * index // len(publishers), 100, f"Publishing: {publisher.name}"
            )
            try:
                await self._check_stop(publisher.name)
                results.append(await publisher.publish(assembler.staging_root, message))
            except (PublishError, ValidationError) as e:
                self.log.log(f"{publisher.name} failed: {e}", "error")
            except RunCancelled:
                raise
            except Exception as e:
                logger.error(f"{publisher.name} crashed: {e}", exc_info=True)
                self.log.log(f"{publisher.name} failed unexpectedly: {e}", "error")
            finally:
                await publisher.close()
        return results

    # ---------------------------------------------- #
    # Entry point
    async def run(self) -> RunState:
        self.log.start_timer()
        await self.state.delete(ERROR_NOTIFICATION_KEY)
        await self.state.set(RUNNING_KEY, {"started": self._now().isoformat()}, ttl=RUNNING_TTL)
        await self.state.set(STATE_KEY, RunState.RUNNING.value)
        self.log.log("Static generation started")

        transformer = self.build_transformer()
        assembler = OutputAssembler(
            self.settings.run.staging_path,
            self.source.site_root,
            self.source.content_dir,
            self.log,
            excluded_extensions=self.settings.assembly.excluded_extensions,
            transformer=transformer if transformer.relative else None,
        )

        try:
            assembler.prepare()
            await self.generate_pages(assembler, transformer)

            await self._check_stop("asset collection")
            self.log.update_progress(ASSETS_PROGRESS, 100, "Copying assets")
            AssetCollector(self.source, self.settings, assembler, self.log).collect()

            self.log.update_progress(INCLUDES_PROGRESS, 100, "Copying extra files")
            assembler.copy_includes(self.settings.assembly.include_paths)

            self.log.update_progress(EXCLUDES_PROGRESS, 100, "Applying exclusions")
            assembler.apply_exclusions(self.settings.assembly.exclude_patterns)

            await self._check_stop("publishing")
            await self.publish(assembler)
            self.log.update_progress(100, 100, "Done")
            final = await self._finish()
        except RunCancelled as e:
            self.log.log(f"Generation cancelled: {e}", "warning")
            final = RunState.IDLE
            await self.state.set(STATE_KEY, final.value)
        except Exception as e:
            logger.error(f"Generation failed: {e}", exc_info=True)
            self.log.log(f"Generation failed: {e}", "error")
            final = await self._finish()
        finally:
            assembler.cleanup()
            await self.state.delete(RUNNING_KEY)
            await self.state.delete(CANCEL_KEY)
            self.log.flush()
        return final

    async def _finish(self) -> RunState:
        errors = self.log.error_count()
        if errors:
            final = RunState.COMPLETED_WITH_ERRORS
            await self.state.set(
                ERROR_NOTIFICATION_KEY, {"count": errors, "timestamp": self._now().isoformat()}
            )
            self.log.log(f"Static generation finished with {errors} errors", "warning")
        else:
            final = RunState.COMPLETED
            self.log.log("Static generation complete")
        await self.state.set(STATE_KEY, final.value)
        return final
