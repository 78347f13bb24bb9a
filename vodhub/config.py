import json
import logging
import os
from typing import NamedTuple

log = logging.getLogger(__name__)

DEFAULT_API_URL = 'https://aiopen.qzz.io/api.php/provide/vod'

DEFAULT_SITE = {
    'site_name': 'VodHub',
    'announcement': '',
    'cache_time': 7200,
    'api_site': {
        'aiopen': {'api': DEFAULT_API_URL, 'name': 'AIOpen', 'detail': ''},
    },
}

# Category names as published by the upstream class list -> type id.
# An empty id means "all categories".
CATEGORY_NAME_MAPPING = {
    '喜剧': '6',
    '爱情': '7',
    '恐怖': '8',
    '动作': '9',
    '科幻': '10',
    '全部': '',
}


class ConfigError(Exception):
    pass


class SourceConfig(NamedTuple):
    key: str
    name: str
    api: str
    detail: str = ''
    disabled: bool = False


class AppConfig:
    def __init__(self, sources, site_name='VodHub', announcement='', cache_time=7200,
                 page_size=24, request_timeout=10.0, session_ttl=3600):
        if not 1 <= page_size <= 100:
            raise ConfigError(f'page_size must be between 1 and 100, got {page_size}')
        if request_timeout <= 0:
            raise ConfigError('request_timeout must be positive')
        self.sources = list(sources)
        self.site_name = site_name
        self.announcement = announcement
        self.cache_time = cache_time
        self.page_size = page_size
        self.request_timeout = request_timeout
        self.session_ttl = session_ttl

    def enabled_sources(self):
        return [s for s in self.sources if not s.disabled]

    def find_source(self, key):
        for s in self.sources:
            if s.key == key and not s.disabled:
                return s
        return None


def parse_sources(api_site):
    if not isinstance(api_site, dict):
        raise ConfigError('api_site must be an object keyed by source id')
    sources = []
    for key, entry in api_site.items():
        if not isinstance(entry, dict) or not entry.get('api'):
            raise ConfigError(f'source {key!r} has no api url')
        sources.append(SourceConfig(
            key=key,
            name=entry.get('name') or key,
            api=entry['api'],
            detail=entry.get('detail', ''),
            disabled=bool(entry.get('disabled', False)),
        ))
    return sources


def _number(name, raw, cast=int):
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise ConfigError(f'{name} must be a number, got {raw!r}')


def _env_number(name, default, cast=int):
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    return _number(name, raw, cast)


def load_config(path=None):
    """Build the app configuration from the JSON site file and environment.

    A missing file falls back to the built-in single-site default; a file
    that exists but cannot be parsed is a hard error.
    """
    path = path or os.environ.get('VODHUB_CONFIG', 'config.json')
    if os.path.exists(path):
        try:
            with open(path, encoding='utf-8') as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f'cannot read {path}: {e}')
        if not isinstance(raw, dict):
            raise ConfigError(f'{path} must hold a JSON object')
        log.info('Loaded site config from %s', path)
    else:
        log.info('No site config at %s, using built-in defaults', path)
        raw = DEFAULT_SITE

    return AppConfig(
        sources=parse_sources(raw.get('api_site', {})),
        site_name=raw.get('site_name', 'VodHub'),
        announcement=raw.get('announcement', ''),
        cache_time=_env_number('VODHUB_CACHE_TIME', _number('cache_time', raw.get('cache_time', 7200))),
        page_size=_env_number('VODHUB_PAGE_SIZE', 24),
        request_timeout=_env_number('VODHUB_TIMEOUT', 10.0, float),
        session_ttl=_env_number('VODHUB_SESSION_TTL', 3600),
    )
