"""Incremental (infinite-scroll) list loading over a paged video source.

One IncrementalListLoader drives paging for one browse view. Fetches run on
a thread pool; every request is tagged with the loader generation that was
current when it started, and a result whose generation is no longer current
is dropped without touching state. ``status`` alone guards against starting
a second fetch while one is in flight.
"""
import enum
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import NamedTuple, Optional

log = logging.getLogger(__name__)

FETCH_POOL = ThreadPoolExecutor(max_workers=8, thread_name_prefix='vodhub-fetch')


class ListQuery(NamedTuple):
    source_id: str
    filter_id: Optional[str] = None
    keyword: Optional[str] = None


class PageResult(NamedTuple):
    items: list
    requested_page: int
    page_size: int

    @property
    def is_full(self):
        # Upstream totals are unreliable; a full page is the only hint that more exists.
        return len(self.items) == self.page_size


class LoaderStatus(enum.Enum):
    IDLE = 'idle'
    LOADING_FIRST_PAGE = 'loading_first_page'
    LOADING_MORE = 'loading_more'
    ERROR = 'error'


class LoadOutcome(enum.Enum):
    SKIPPED = 'skipped'
    APPLIED = 'applied'
    STALE = 'stale'
    FAILED = 'failed'


LOADING = (LoaderStatus.LOADING_FIRST_PAGE, LoaderStatus.LOADING_MORE)


def _done(outcome):
    f = Future()
    f.set_result(outcome)
    return f


class IncrementalListLoader:
    def __init__(self, gateway, page_size=24, executor=None):
        if not 1 <= page_size <= 100:
            raise ValueError(f'page_size must be between 1 and 100, got {page_size}')
        self.gateway = gateway
        self.page_size = page_size
        self._executor = executor or FETCH_POOL
        self._lock = threading.Lock()
        self.query = None
        self.items = []
        self.next_page = 1
        self.has_more = True
        self.status = LoaderStatus.IDLE
        self.generation = 0
        self.last_error = None

    def reset(self, query):
        with self._lock:
            self.generation += 1
            self.query = query
            self.items = []
            self.next_page = 1
            self.has_more = True
            self.status = LoaderStatus.IDLE
            self.last_error = None
            log.debug('Loader reset to %r (generation %d)', query, self.generation)

    def close(self):
        """Detach from the current query; anything still in flight is dropped."""
        with self._lock:
            self.generation += 1
            self.query = None
            self.items = []
            self.has_more = False
            self.status = LoaderStatus.IDLE

    def load_next(self):
        return self._start(from_scroll=False)

    def trigger_from_scroll_signal(self):
        return self._start(from_scroll=True)

    def _start(self, from_scroll):
        with self._lock:
            if self.query is None or not self.has_more:
                return _done(LoadOutcome.SKIPPED)
            if self.status in LOADING:
                return _done(LoadOutcome.SKIPPED)
            # A scroll signal never retries a failed page; only an explicit load does.
            if from_scroll and self.status is not LoaderStatus.IDLE:
                return _done(LoadOutcome.SKIPPED)
            generation, page, query = self.generation, self.next_page, self.query
            self.status = LoaderStatus.LOADING_FIRST_PAGE if page == 1 else LoaderStatus.LOADING_MORE

        outcome = Future()
        try:
            pending = self._executor.submit(
                self.gateway.fetch_page,
                query.source_id, query.filter_id, page, self.page_size, query.keyword,
            )
        except RuntimeError as e:
            # executor shut down
            self._fail(generation, page, e)
            outcome.set_result(LoadOutcome.FAILED)
            return outcome
        pending.add_done_callback(lambda f: outcome.set_result(self._settle(f, generation, page)))
        return outcome

    def _settle(self, pending, generation, page):
        try:
            result = pending.result()
            items, full = list(result.items), result.is_full
        except Exception as e:
            return self._fail(generation, page, e)

        with self._lock:
            if generation != self.generation:
                log.debug('Dropping stale page %d from generation %d', page, generation)
                return LoadOutcome.STALE
            if page == 1:
                self.items = items
            else:
                self.items.extend(items)
            self.has_more = full
            self.next_page = page + 1
            self.status = LoaderStatus.IDLE
            self.last_error = None
        return LoadOutcome.APPLIED

    def _fail(self, generation, page, error):
        with self._lock:
            if generation != self.generation:
                return LoadOutcome.STALE
            self.status = LoaderStatus.ERROR
            self.last_error = str(error)
            query = self.query
        log.warning('Loading page %d of %r failed: %s', page, query, error)
        return LoadOutcome.FAILED

    def snapshot(self, since=0):
        with self._lock:
            query = self.query
            return {
                'query': query._asdict() if query else None,
                'status': self.status.value,
                'generation': self.generation,
                'next_page': self.next_page,
                'has_more': self.has_more,
                'total': len(self.items),
                'since': since,
                'items': list(self.items[since:]),
                'error': self.last_error,
            }
