"""
Publishers deliver the staged site to its destinations.
"""

import logging
from typing import List, Optional

from staticgen.config import Settings
from staticgen.errors import PublishError
from staticgen.infra.http import HttpClient
from staticgen.interfaces import ProgressSink, Publisher

from .archive import ZipPublisher
from .batch import BatchPublisher, StopCheck
from .cloudflare import CloudflarePublisher
from .git_local import GitLocalPublisher
from .github import GitHubPublisher
from .gitlab import GitLabPublisher
from .local import LocalPublisher
from .netlify import NetlifyPublisher


logger = logging.getLogger(__name__)

__all__ = [
    "BatchPublisher",
    "CloudflarePublisher",
    "GitHubPublisher",
    "GitLabPublisher",
    "GitLocalPublisher",
    "LocalPublisher",
    "NetlifyPublisher",
    "ZipPublisher",
    "build_publishers",
]


def build_publishers(
    settings: Settings,
    log: ProgressSink,
    http: Optional[HttpClient] = None,
    should_stop: Optional[StopCheck] = None,
) -> List[Publisher]:
    """Instantiate every enabled publisher, in delivery order.

    A publisher whose settings are incomplete is reported and left out.
    """
    cfg = settings.publishers
    factories = []
    if cfg.local.enabled:
        factories.append(lambda: LocalPublisher(cfg.local, log))
    if cfg.zip.enabled:
        factories.append(lambda: ZipPublisher(cfg.zip, log))
    if cfg.git_local.enabled:
        factories.append(lambda: GitLocalPublisher(cfg.git_local, log))
    if cfg.github.enabled:
        factories.append(lambda: GitHubPublisher(cfg.github, log, http=http, should_stop=should_stop))
    if cfg.gitlab.enabled:
        factories.append(lambda: GitLabPublisher(cfg.gitlab, log, http=http, should_stop=should_stop))
    if cfg.cloudflare.enabled:
        factories.append(lambda: CloudflarePublisher(cfg.cloudflare, log, http=http))
    if cfg.netlify.enabled:
        factories.append(lambda: NetlifyPublisher(cfg.netlify, log, http=http))

    publishers: List[Publisher] = []
    for factory in factories:
        try:
            publishers.append(factory())
        except PublishError as e:
            log.log(str(e), "error")
    logger.debug(f"Enabled publishers: {[p.name for p in publishers]}")
    return publishers
