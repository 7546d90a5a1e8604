"""
Incremental directory search.

`execute_search` fetches one page of results for a query/filter pair.
`SearchController` keeps the interactive state of one search box: it
debounces typing, tags every dispatch with a generation number and drops
responses from dispatches that have since been superseded.
"""
import asyncio
from typing import Awaitable, Callable, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, Field
from pymongo.database import Database

from logger import get_logger
from profile_service import (
    browse_profiles,
    fetch_experiences_for_users,
    fetch_profiles_by_ids,
    group_by_user,
    search_experience_users,
    search_profiles,
)
from schemas import Experience, Profile

logger = get_logger(__name__)

SearchFilter = Literal["all", "degree", "course", "exchange"]
SEARCH_FILTERS = get_args(SearchFilter)

PAGE_SIZE = 50
DEBOUNCE_MS = 300
MAX_BADGES = 4


class SearchResult(BaseModel):
    profile: Profile
    experiences: List[Experience] = Field(default_factory=list)


class SearchPage(BaseModel):
    results: List[SearchResult] = Field(default_factory=list)
    has_more: bool = False


def execute_search(
    db: Database,
    current_user_id: str,
    query: str,
    search_filter: str,
    offset: int,
    page_size: int = PAGE_SIZE,
) -> SearchPage:
    """Fetch one page of profiles with their experience badges."""
    if search_filter not in SEARCH_FILTERS:
        raise ValueError(f"Unknown search filter: {search_filter}")

    if search_filter == "all":
        if query.strip():
            profiles = search_profiles(db, query, current_user_id, page_size, offset)
        else:
            profiles = browse_profiles(db, current_user_id, page_size, offset)
        has_more = len(profiles) >= page_size
    else:
        user_ids = search_experience_users(db, query, search_filter, current_user_id)
        page_ids = user_ids[offset:offset + page_size]
        profiles = fetch_profiles_by_ids(db, page_ids, current_user_id)
        has_more = offset + page_size < len(user_ids)

    experiences = group_by_user(fetch_experiences_for_users(db, [p.user_id for p in profiles]))
    results = [
        SearchResult(profile=p, experiences=experiences.get(p.user_id, []))
        for p in profiles
    ]
    return SearchPage(results=results, has_more=has_more)


def merge_results(existing: List[SearchResult], incoming: List[SearchResult]) -> List[SearchResult]:
    """Append `incoming` to `existing`, skipping profiles already present."""
    seen = {r.profile.user_id for r in existing}
    merged = list(existing)
    for result in incoming:
        if result.profile.user_id in seen:
            continue
        seen.add(result.profile.user_id)
        merged.append(result)
    return merged


# Cards

def initials(profile: Profile) -> str:
    first = (profile.first_name or "")[:1]
    last = (profile.last_name or "")[:1]
    return (first + last).upper() or "?"


def badge_label(exp: Experience) -> str:
    if exp.exp_type == "degree":
        return exp.role or "Degree"
    if exp.exp_type == "course":
        if not exp.organization:
            return "Course"
        return f"{exp.organization} ({exp.code})" if exp.code else exp.organization
    if exp.exp_type == "exchange":
        return f"📍 {exp.organization}" if exp.organization else "Exchange"
    return exp.exp_type


def to_card(result: SearchResult) -> dict:
    visible = result.experiences[:MAX_BADGES]
    return {
        "profile": result.profile.model_dump(mode="json"),
        "initials": initials(result.profile),
        "badges": [{"type": e.exp_type, "label": badge_label(e)} for e in visible],
        "extra_badges": len(result.experiences) - len(visible),
    }


# Interactive search

FetchPage = Callable[[str, str, int], Awaitable[SearchPage]]
OnChange = Callable[[dict], Awaitable[None]]


class SearchController:
    """
    Interactive state for one search box.

    Every query or filter change resets paging and restarts the debounce
    timer (no delay for a blank query). Each dispatch takes the next
    generation number; when its response arrives after a newer dispatch has
    started, the response is thrown away. In-flight requests are not
    cancelled, only ignored.
    """

    def __init__(
        self,
        fetch_page: FetchPage,
        current_user_id: Optional[str],
        on_change: Optional[OnChange] = None,
        page_size: int = PAGE_SIZE,
        debounce_ms: int = DEBOUNCE_MS,
    ):
        self.fetch_page = fetch_page
        self.current_user_id = current_user_id
        self.on_change = on_change
        self.page_size = page_size
        self.debounce_ms = debounce_ms

        self.query = ""
        self.filter = "all"
        self.results: List[SearchResult] = []
        self.loading = False
        self.has_more = True
        self.offset = 0

        self._appending = False
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._inflight: set = set()

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self) -> Dict:
        return {
            "query": self.query,
            "filter": self.filter,
            "results": [to_card(r) for r in self.results],
            "loading": self.loading,
            "has_more": self.has_more,
        }

    async def _notify(self) -> None:
        if self.on_change is not None:
            await self.on_change(self.snapshot())

    def start(self) -> None:
        """Dispatch the initial (browse) search."""
        self._schedule()

    def set_query(self, query: str) -> None:
        self.query = query
        self._schedule()

    def set_filter(self, search_filter: str) -> None:
        if search_filter not in SEARCH_FILTERS:
            raise ValueError(f"Unknown search filter: {search_filter}")
        self.filter = search_filter
        self._schedule()

    def _schedule(self) -> None:
        self.offset = 0
        self.has_more = True
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        delay = self.debounce_ms / 1000 if self.query.strip() else 0
        self._timer = asyncio.create_task(self._fire_after(delay, self.query, self.filter))

    async def _fire_after(self, delay: float, query: str, search_filter: str) -> None:
        await asyncio.sleep(delay)
        self._spawn(self._execute(query, search_filter, 0, append=False))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    def load_more(self) -> Optional[asyncio.Task]:
        """Fetch the page after `offset`; ignored while any dispatch is pending."""
        if not self.current_user_id or self.loading or self._appending or not self.has_more:
            return None
        self._appending = True
        next_offset = self.offset + self.page_size
        return self._spawn(self._execute(self.query, self.filter, next_offset, append=True))

    async def _execute(self, query: str, search_filter: str, offset: int, append: bool) -> None:
        if not self.current_user_id:
            return

        self._generation += 1
        generation = self._generation
        if not append:
            self.loading = True
            await self._notify()

        try:
            page = await self.fetch_page(query, search_filter, offset)

            if generation != self._generation:
                logger.debug(f"Dropping stale search response (generation {generation})")
                return

            if append:
                self.results = merge_results(self.results, page.results)
                self.offset = offset
            else:
                self.results = page.results
            self.has_more = page.has_more
        except Exception as e:
            logger.error(f"Search error: {e}")
        finally:
            if append:
                self._appending = False
            if generation == self._generation:
                self.loading = False
                await self._notify()

    async def wait_idle(self) -> None:
        """Wait until the pending timer and every in-flight dispatch have finished."""
        while True:
            pending = [t for t in [self._timer, *self._inflight] if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        for task in [self._timer, *self._inflight]:
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(
            *[t for t in [self._timer, *self._inflight] if t is not None],
            return_exceptions=True,
        )
