"""Tests for the upstream video source gateway."""

from unittest.mock import MagicMock

import pytest
import requests

from conftest import fake_response, upstream_item

from vodhub.loader import PageResult
from vodhub.sources import (
    GatewayError,
    UnknownSourceError,
    VideoSourceGateway,
    format_video,
    partition_categories,
    placeholder_url,
)


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def gateway(app_config, http):
    return VideoSourceGateway(app_config, http=http)


def test_format_video_normalizes_upstream_record():
    video = format_video(upstream_item(42), 's1')

    assert video == {
        "id": "42",
        "title": "Movie 42",
        "poster": "http://img.test/42.jpg",
        "year": "2023",
        "rating": "8.1",
        "remarks": "HD",
        "type_id": 6,
        "type_name": "喜剧",
        "source": "s1",
    }


def test_format_video_fills_missing_poster_and_year():
    video = format_video({"vod_id": 1, "vod_name": "No Art", "vod_time": "2019-04-02 10:00:00"})

    assert video['poster'] == placeholder_url('No Art')
    assert video['year'] == '2019'
    assert video['rating'] == ''


def test_format_video_tolerates_bad_timestamp():
    assert format_video({"vod_id": 1, "vod_time": "yesterday"})['year'] == ''
    assert format_video({"vod_id": 1, "vod_time": 1690000000})['year'] == ''


def test_partition_categories():
    categories = [
        {"type_id": 1, "parent_type_id": 0, "name": "电影"},
        {"type_id": 2, "parent_type_id": 0, "name": "剧集"},
        {"type_id": 6, "parent_type_id": 1, "name": "喜剧"},
        {"type_id": 7, "parent_type_id": 1, "name": "爱情"},
    ]

    top, children = partition_categories(categories)

    assert [c['type_id'] for c in top] == [1, 2]
    assert [c['type_id'] for c in children[1]] == [6, 7]
    assert 2 not in children


def test_videos_builds_upstream_request(gateway, http):
    http.get.return_value = fake_response({"list": [upstream_item(1)], "page": 2, "pagecount": 9, "total": 170})

    listing = gateway.videos('s1', '6', page=2, page_size=20, keyword='dragon')

    url = http.get.call_args.args[0]
    kwargs = http.get.call_args.kwargs
    assert url == 'http://one.test/api.php/provide/vod/'
    assert kwargs['params'] == {'ac': 'videolist', 'at': 'json', 'pg': '2', 'pagesize': '20', 't': '6', 'wd': 'dragon'}
    assert kwargs['timeout'] == 2.0
    assert 'Mozilla' in kwargs['headers']['User-Agent']
    assert listing['page'] == 2
    assert listing['pagecount'] == 9
    assert listing['total'] == 170
    assert listing['list'][0]['id'] == '1'


def test_videos_omits_empty_filters(gateway, http):
    http.get.return_value = fake_response({"list": []})

    gateway.videos('s2')

    assert http.get.call_args.args[0] == 'http://two.test/api.php/provide/vod/'
    assert http.get.call_args.kwargs['params'] == {'ac': 'videolist', 'at': 'json', 'pg': '1', 'pagesize': '20'}


def test_fetch_page_returns_page_result(gateway, http):
    http.get.return_value = fake_response({"list": [upstream_item(i) for i in range(24)]})

    result = gateway.fetch_page('s1', None, 3, 24)

    assert isinstance(result, PageResult)
    assert result.requested_page == 3
    assert result.is_full is True


@pytest.mark.parametrize('page, page_size', [(0, 20), (1, 0), (1, 101)])
def test_fetch_page_validates_paging(gateway, http, page, page_size):
    with pytest.raises(ValueError):
        gateway.fetch_page('s1', None, page, page_size)
    http.get.assert_not_called()


def test_unknown_and_disabled_sources(gateway):
    with pytest.raises(UnknownSourceError):
        gateway.videos('nope')
    with pytest.raises(UnknownSourceError):
        gateway.source('off')


@pytest.mark.parametrize('response', [
    fake_response(status=502),
    fake_response(json_error=ValueError('Expecting value')),
    fake_response(["not", "a", "dict"]),
    fake_response({"code": 1, "msg": "no list"}),
])
def test_upstream_failures_become_gateway_errors(gateway, http, response):
    http.get.return_value = response

    with pytest.raises(GatewayError):
        gateway.fetch_page('s1', None, 1, 20)


def test_timeout_becomes_gateway_error(gateway, http):
    http.get.side_effect = requests.Timeout('read timed out')

    with pytest.raises(GatewayError, match='read timed out'):
        gateway.videos('s1')


def test_categories(gateway, http):
    http.get.return_value = fake_response({"class": [
        {"type_id": 1, "type_pid": 0, "type_name": "电影"},
        {"type_id": "6", "type_pid": "1", "type_name": "喜剧"},
    ]})

    categories = gateway.categories('s1')

    assert http.get.call_args.kwargs['params'] == {'ac': 'list', 'at': 'json'}
    assert categories == [
        {"type_id": 1, "parent_type_id": 0, "name": "电影"},
        {"type_id": 6, "parent_type_id": 1, "name": "喜剧"},
    ]


def test_categories_missing_class_is_empty(gateway, http):
    http.get.return_value = fake_response({"list": []})

    assert gateway.categories('s1') == []


def test_raw_never_overrides_action(gateway, http):
    http.get.return_value = fake_response({"class": []})

    src, data = gateway.raw('s1', 'categories', {'ac': 'detail', 'h': 24, 'skip': None})

    assert src.key == 's1'
    assert data == {"class": []}
    assert http.get.call_args.kwargs['params'] == {'ac': 'list', 'at': 'json', 'h': '24'}


def test_raw_rejects_unknown_action(gateway):
    with pytest.raises(ValueError):
        gateway.raw('s1', 'delete')


def test_home_feed_keeps_failed_sources_as_empty_rows(gateway, http):
    def get(url, **kwargs):
        if 'two.test' in url:
            raise requests.ConnectionError('refused')
        return fake_response({"list": [upstream_item(i) for i in range(10)]})

    http.get.side_effect = get

    rows = gateway.home_feed()

    assert [r['source']['id'] for r in rows] == ['s1', 's2']
    assert len(rows[0]['videos']) == 10
    assert rows[1]['videos'] == []


def test_browse_catalog_maps_category_and_tag(gateway, http):
    http.get.return_value = fake_response({"list": [upstream_item(5)]})

    items = gateway.browse_catalog('喜剧', '动画', page=3, page_size=10)

    params = http.get.call_args.kwargs['params']
    assert params['t'] == '6'
    assert params['wd'] == '动画'
    assert params['pg'] == '3'
    assert items == [{"id": "5", "title": "Movie 5", "poster": "http://img.test/5.jpg", "rate": "8.1", "year": "2023"}]


def test_browse_catalog_neutral_tag_has_no_keyword(gateway, http):
    http.get.return_value = fake_response({"list": []})

    gateway.browse_catalog('全部', '热门', source_id='s2')

    params = http.get.call_args.kwargs['params']
    assert 't' not in params
    assert 'wd' not in params
    assert http.get.call_args.args[0].startswith('http://two.test')


def test_odd_timestamp_does_not_drop_the_page(gateway, http):
    rows = [upstream_item(i) for i in range(19)]
    rows.append(upstream_item(19, vod_year='', vod_time=1690000000))
    http.get.return_value = fake_response({"list": rows})

    result = gateway.fetch_page('s1', None, 1, 20)

    assert len(result.items) == 20
    assert result.items[-1]['year'] == ''
    assert result.is_full is True
