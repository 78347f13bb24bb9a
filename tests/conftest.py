"""Pytest configuration and shared fixtures."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
import requests

from vodhub.config import AppConfig, SourceConfig
from vodhub.loader import PageResult
from vodhub.sources import GatewayError, UnknownSourceError


def make_videos(count, start=0, source='s1'):
    return [{"id": str(i), "title": f"Video {i}", "source": source} for i in range(start, start + count)]


def upstream_item(i, **extra):
    item = {
        "vod_id": i,
        "vod_name": f"Movie {i}",
        "type_id": 6,
        "type_name": "喜剧",
        "vod_pic": f"http://img.test/{i}.jpg",
        "vod_year": "2023",
        "vod_score": "8.1",
        "vod_remarks": "HD",
    }
    item.update(extra)
    return item


def fake_response(payload=None, status=200, json_error=None):
    resp = MagicMock()
    resp.status_code = status
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f'{status} Error')
    if json_error is not None:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = payload
    return resp


class FakeGateway:
    """In-memory gateway; ``hold()`` keeps the next fetches in flight until released."""

    def __init__(self, pages=None, sources=('s1', 's2')):
        self.pages = pages or {}
        self.sources = set(sources)
        self.calls = []
        self.failures = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._gate = None
        self._lock = threading.Lock()
        self.started = threading.Event()

    def hold(self):
        self._gate = threading.Event()
        self.started.clear()
        return self._gate

    def fail_next(self, error=None):
        self.failures.append(error or GatewayError('upstream down'))

    def source(self, source_id):
        if source_id not in self.sources:
            raise UnknownSourceError(source_id)
        return SourceConfig(source_id, source_id.upper(), 'http://upstream.test/api')

    def fetch_page(self, source_id, filter_id, page, page_size, keyword=None):
        with self._lock:
            self.calls.append((source_id, filter_id, page, page_size, keyword))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            gate = self._gate
            failure = self.failures.pop(0) if self.failures else None
        self.started.set()
        try:
            if gate is not None:
                gate.wait(5)
            if failure is not None:
                raise failure
            items = self.pages.get((source_id, filter_id, page), [])
            return PageResult(list(items[:page_size]), page, page_size)
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def fake_gateway():
    return FakeGateway(pages={
        ('s1', None, 1): make_videos(20),
        ('s1', None, 2): make_videos(7, start=20),
        ('s1', '6', 1): make_videos(3, start=100),
    })


@pytest.fixture
def app_config():
    return AppConfig(
        sources=[
            SourceConfig('s1', 'Source One', 'http://one.test/api.php/provide/vod'),
            SourceConfig('s2', 'Source Two', 'http://two.test/api.php/provide/vod/', 'detail'),
            SourceConfig('off', 'Disabled', 'http://off.test/api', disabled=True),
        ],
        site_name='TestHub',
        announcement='Maintenance tonight',
        cache_time=600,
        page_size=20,
        request_timeout=2.0,
    )


@pytest.fixture
def client(monkeypatch, fake_gateway, app_config):
    from vodhub import app as app_module
    from vodhub.sessions import SessionRegistry

    monkeypatch.setattr(app_module, 'config', app_config)
    monkeypatch.setattr(app_module, 'gateway', fake_gateway)
    monkeypatch.setattr(app_module, 'registry', SessionRegistry(fake_gateway, page_size=20))
    app_module.app.config['TESTING'] = True
    with app_module.app.test_client() as c:
        yield c
