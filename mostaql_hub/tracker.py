"""Mostaql Hub — Tracked Projects.

Watches individual projects (typically ones the user bid on) for changes
in status or ongoing-communications count. Each check re-fetches the
project's detail page; the first successful fetch only records a
baseline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional

from mostaql_hub.errors import FetchError, ParseError
from mostaql_hub.models import utc_timestamp
from mostaql_hub.scraper.list_scraper import PROJECT_ID_RE
from mostaql_hub.utils.logger import get_logger

if TYPE_CHECKING:
    from mostaql_hub.config import TrackedProjectConfig
    from mostaql_hub.scraper.fetcher import Fetcher

logger = get_logger(__name__)


@dataclass
class TrackedProject:
    """A watched project and its last known state."""

    url: str
    title: str = ""
    status: str = ""
    communications: str = ""
    last_checked: str = ""

    @property
    def project_id(self) -> str:
        match = PROJECT_ID_RE.search(self.url)
        return match.group(1) if match else self.url

    @property
    def has_baseline(self) -> bool:
        return bool(self.status or self.communications)


@dataclass(frozen=True)
class TrackedUpdate:
    """A detected change on a tracked project."""

    url: str
    title: str
    status: str
    communications: str
    changes: tuple[str, ...] = field(default_factory=tuple)

    def to_wire(self) -> dict[str, Any]:
        match = PROJECT_ID_RE.search(self.url)
        return {
            "id": match.group(1) if match else "",
            "title": self.title,
            "url": self.url,
            "status": self.status,
            "communications": self.communications,
        }


UpdateHandler = Callable[[TrackedUpdate], Awaitable[None]]


class ProjectTracker:
    """Best-effort change detection over a set of tracked projects.

    Attributes:
        fetcher: Used for detail pages.
        on_update: Called for every detected change.
    """

    def __init__(
        self,
        fetcher: "Fetcher",
        projects: Iterable["TrackedProjectConfig"] = (),
        on_update: Optional[UpdateHandler] = None,
    ) -> None:
        self.fetcher = fetcher
        self.on_update = on_update
        self._projects: dict[str, TrackedProject] = {}
        for project in projects:
            self.track(project.url, project.title)

    @property
    def projects(self) -> list[TrackedProject]:
        return list(self._projects.values())

    def track(self, url: str, title: str = "") -> TrackedProject:
        """Start watching a project (idempotent; keeps the existing baseline)."""
        if url not in self._projects:
            self._projects[url] = TrackedProject(url=url, title=title)
            logger.info("Tracking project: %s", title or url)
        return self._projects[url]

    def untrack(self, url: str) -> bool:
        removed = self._projects.pop(url, None)
        if removed is not None:
            logger.info("Stopped tracking project: %s", removed.title or url)
        return removed is not None

    async def check(self) -> list[TrackedUpdate]:
        """Re-fetch every tracked project and report changes.

        Returns:
            Updates detected in this pass, in tracking order.
        """
        if not self._projects:
            return []

        logger.debug("Checking %d tracked project(s)...", len(self._projects))
        updates: list[TrackedUpdate] = []
        for project in list(self._projects.values()):
            try:
                detail = await self.fetcher.fetch_detail(project.url)
            except (FetchError, ParseError) as e:
                logger.warning("Tracked project %s not checked: %s", project.project_id, e)
                continue
            except Exception as e:
                logger.error("Unexpected error checking %s: %s", project.project_id, e)
                continue

            changes: list[str] = []
            if project.has_baseline:
                if detail.status and detail.status != project.status:
                    changes.append(f"الحالة: {project.status or '—'} -> {detail.status}")
                if detail.communications and detail.communications != project.communications:
                    changes.append(
                        f"التواصلات: {project.communications or '—'} -> {detail.communications}"
                    )

            project.status = detail.status or project.status
            project.communications = detail.communications or project.communications
            project.last_checked = utc_timestamp()

            if not changes:
                continue

            update = TrackedUpdate(
                url=project.url,
                title=project.title,
                status=project.status,
                communications=project.communications,
                changes=tuple(changes),
            )
            updates.append(update)
            if self.on_update is not None:
                try:
                    await self.on_update(update)
                except Exception as e:
                    logger.error("Tracked update handler failed: %s", e)

        if updates:
            logger.info("🔄 %d tracked project(s) changed", len(updates))
        return updates
