import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from urllib.parse import quote

import requests

from vodhub.config import CATEGORY_NAME_MAPPING
from vodhub.loader import PageResult

log = logging.getLogger(__name__)

HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36',
    'Accept': 'application/json, text/plain, */*',
}

ACTIONS = {'categories': 'list', 'videos': 'videolist'}

# Tags that mean "no keyword" in the catalog rails
NEUTRAL_TAGS = ('全部', '热门')


class GatewayError(Exception):
    pass


class UnknownSourceError(GatewayError):
    pass


def placeholder_url(title, width=300, height=450):
    return f'/api/placeholder?text={quote(title or "")}&width={width}&height={height}'


def _year_of(v):
    if v.get('vod_year'):
        return str(v['vod_year'])
    stamp = str(v.get('vod_time') or '')
    try:
        return str(datetime.strptime(stamp[:10], '%Y-%m-%d').year)
    except ValueError:
        return ''


def format_video(v, source_id=''):
    title = v.get('vod_name') or 'Untitled'
    return {
        "id": str(v.get('vod_id', '')),
        "title": title,
        "poster": v.get('vod_pic') or placeholder_url(title),
        "year": _year_of(v),
        "rating": v.get('vod_score') or '',
        "remarks": v.get('vod_remarks') or '',
        "type_id": v.get('type_id'),
        "type_name": v.get('type_name') or '',
        "source": source_id,
    }


def format_category(c):
    return {
        "type_id": int(c['type_id']),
        "parent_type_id": int(c.get('type_pid') or 0),
        "name": c.get('type_name', ''),
    }


def partition_categories(categories):
    """Split categories into top-level ones and children keyed by parent id."""
    top, children = [], {}
    for c in categories:
        if c['parent_type_id'] == 0:
            top.append(c)
        else:
            children.setdefault(c['parent_type_id'], []).append(c)
    return top, children


def _check_paging(page, page_size):
    if page < 1:
        raise ValueError(f'page must be >= 1, got {page}')
    if not 1 <= page_size <= 100:
        raise ValueError(f'page_size must be between 1 and 100, got {page_size}')


class VideoSourceGateway:
    """Reads categories and video pages from the configured upstream API sites."""

    def __init__(self, config, http=None):
        self.config = config
        self.http = http or requests.Session()

    def source(self, source_id):
        src = self.config.find_source(source_id)
        if src is None:
            raise UnknownSourceError(f'unknown or disabled source: {source_id}')
        return src

    def _get(self, src, params):
        url = src.api.rstrip('/') + '/'
        try:
            r = self.http.get(url, params=params, headers=HEADERS, timeout=self.config.request_timeout)
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            log.warning('Upstream %s failed: %s', src.key, e)
            raise GatewayError(f'{src.key}: {e}') from e
        except ValueError as e:
            log.warning('Upstream %s returned malformed JSON', src.key)
            raise GatewayError(f'{src.key}: malformed JSON') from e
        if not isinstance(data, dict):
            raise GatewayError(f'{src.key}: unexpected payload')
        return data

    def raw(self, source_id, action, params=None):
        src = self.source(source_id)
        if action not in ACTIONS:
            raise ValueError(f'unknown action: {action}')
        query = {'ac': ACTIONS[action], 'at': 'json'}
        for key, value in (params or {}).items():
            if value is not None and key != 'ac':
                query[key] = str(value)
        return src, self._get(src, query)

    def categories(self, source_id):
        _, data = self.raw(source_id, 'categories')
        try:
            return [format_category(c) for c in data.get('class') or [] if 'type_id' in c]
        except (TypeError, ValueError) as e:
            raise GatewayError(f'{source_id}: malformed category list') from e

    def videos(self, source_id, filter_id=None, page=1, page_size=20, keyword=None):
        _check_paging(page, page_size)
        params = {'pg': page, 'pagesize': page_size, 't': filter_id or None, 'wd': keyword or None}
        _, data = self.raw(source_id, 'videos', params)
        entries = data.get('list')
        if not isinstance(entries, list):
            raise GatewayError(f'{source_id}: response has no video list')
        try:
            return {
                "list": [format_video(v, source_id) for v in entries],
                "page": int(data.get('page') or page),
                "pagecount": int(data.get('pagecount') or 1),
                "total": int(data.get('total') or 0),
            }
        except (AttributeError, TypeError, ValueError) as e:
            raise GatewayError(f'{source_id}: malformed video list') from e

    def fetch_page(self, source_id, filter_id, page, page_size, keyword=None):
        listing = self.videos(source_id, filter_id, page, page_size, keyword)
        return PageResult(listing['list'], page, page_size)

    def latest(self, source_id, limit=10):
        return self.videos(source_id, page=1, page_size=limit)['list']

    def home_feed(self, source_count=3, per_source=10):
        sources = self.config.enabled_sources()[:source_count]

        def row(src):
            try:
                videos = self.latest(src.key, per_source)
            except GatewayError:
                videos = []
            return {"source": {"id": src.key, "name": src.name}, "videos": videos}

        if not sources:
            return []
        with ThreadPoolExecutor(max_workers=len(sources)) as executor:
            return list(executor.map(row, sources))

    def browse_catalog(self, category, tag=None, page=1, page_size=20, source_id=None):
        """Category rail listing reshaped to the poster-card shape.

        Sources serve one mixed catalog, so there is no movie/tv split here;
        the route's ``kind`` argument is accepted and ignored.
        """
        src = self.source(source_id) if source_id else (self.config.enabled_sources() or [None])[0]
        if src is None:
            raise UnknownSourceError('no source configured')
        keyword = tag if tag and tag not in NEUTRAL_TAGS else None
        listing = self.videos(src.key, CATEGORY_NAME_MAPPING.get(category) or None,
                              page, page_size, keyword)
        return [
            {"id": v['id'], "title": v['title'], "poster": v['poster'],
             "rate": v['rating'], "year": v['year']}
            for v in listing['list']
        ]
