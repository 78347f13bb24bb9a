"""Per-browser session state: browse views, favorites, play records, UI prefs."""
import logging
import threading
import time
import uuid

from vodhub.loader import IncrementalListLoader

log = logging.getLogger(__name__)

MAX_PLAY_RECORDS = 100


def record_key(source, video_id):
    return f'{source}+{video_id}'


class Library:
    """Favorites and play records, keyed ``source+id``."""

    def __init__(self):
        self._lock = threading.Lock()
        self._favorites = {}
        self._play_records = {}

    def toggle_favorite(self, video, now=None):
        key = record_key(video['source'], video['id'])
        with self._lock:
            if key in self._favorites:
                del self._favorites[key]
                return False
            self._favorites[key] = dict(video, key=key, save_time=now or time.time())
            return True

    def is_favorite(self, source, video_id):
        with self._lock:
            return record_key(source, video_id) in self._favorites

    def favorites(self):
        with self._lock:
            favs = list(self._favorites.values())
        return sorted(favs, key=lambda f: f['save_time'], reverse=True)

    def clear_favorites(self):
        with self._lock:
            self._favorites.clear()

    def save_play_record(self, record, now=None):
        key = record_key(record['source'], record['id'])
        with self._lock:
            self._play_records[key] = dict(record, key=key, save_time=now or time.time())
            if len(self._play_records) > MAX_PLAY_RECORDS:
                oldest = min(self._play_records.values(), key=lambda r: r['save_time'])
                del self._play_records[oldest['key']]
        return key

    def play_records(self):
        with self._lock:
            records = list(self._play_records.values())
        return sorted(records, key=lambda r: r['save_time'], reverse=True)

    def delete_play_record(self, key):
        with self._lock:
            return self._play_records.pop(key, None) is not None


class BrowseSession:
    def __init__(self, session_id, gateway, page_size, now=None):
        self.id = session_id
        self.gateway = gateway
        self.page_size = page_size
        self.last_seen = now or time.time()
        self.library = Library()
        self.prefs = {'sidebar_collapsed': False, 'announcement_seen': ''}
        self._views = {}
        self._lock = threading.Lock()

    def touch(self, now=None):
        self.last_seen = now or time.time()

    def open_view(self, query=None):
        loader = IncrementalListLoader(self.gateway, self.page_size)
        if query is not None:
            loader.reset(query)
        view_id = uuid.uuid4().hex[:12]
        with self._lock:
            self._views[view_id] = loader
        return view_id, loader

    def view(self, view_id):
        with self._lock:
            return self._views.get(view_id)

    def close_view(self, view_id):
        with self._lock:
            loader = self._views.pop(view_id, None)
        if loader is None:
            return False
        loader.close()
        return True

    def view_count(self):
        with self._lock:
            return len(self._views)

    def close(self):
        with self._lock:
            views, self._views = self._views, {}
        for loader in views.values():
            loader.close()


class SessionRegistry:
    def __init__(self, gateway, page_size=24, ttl=3600):
        self.gateway = gateway
        self.page_size = page_size
        self.ttl = ttl
        self._sessions = {}
        self._lock = threading.Lock()

    def get(self, session_id):
        with self._lock:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id, now=None):
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = BrowseSession(session_id, self.gateway, self.page_size, now)
                self._sessions[session_id] = state
                log.info('Session %s started', session_id)
        state.touch(now)
        return state

    def end(self, session_id):
        with self._lock:
            state = self._sessions.pop(session_id, None)
        if state is None:
            return False
        state.close()
        log.info('Session %s ended', session_id)
        return True

    def sweep(self, now=None):
        now = now or time.time()
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if now - s.last_seen > self.ttl]
        for sid in expired:
            self.end(sid)
        return len(expired)

    def __len__(self):
        with self._lock:
            return len(self._sessions)
