import html
import logging
import os
import time
import uuid
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone

from flask import Flask, render_template_string, jsonify, Response, request, session

from vodhub.config import load_config
from vodhub.loader import ListQuery
from vodhub.sessions import SessionRegistry
from vodhub.sources import VideoSourceGateway, GatewayError, UnknownSourceError, partition_categories

log = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.environ.get('SECRET_KEY', 'vodhub-dev-secret')

# --- CONFIGURATION ---
config = load_config()
gateway = VideoSourceGateway(config)
registry = SessionRegistry(gateway, page_size=config.page_size, ttl=config.session_ttl)

SWEEP_INTERVAL = 60
# Extra seconds a browse request waits past the upstream timeout
OUTCOME_GRACE = 5
_last_sweep = [time.monotonic()]


class InvalidRequest(ValueError):
    pass


def api_error(status, message):
    return jsonify({"code": status, "message": message}), status


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidRequest('request body must be a JSON object')
    return data


def current_session():
    sid = session.get('sid')
    if not sid:
        sid = uuid.uuid4().hex
        session['sid'] = sid
    return registry.get_or_create(sid)


def query_from(data):
    source_id = data.get('sourceId')
    if not isinstance(source_id, str) or not source_id.strip():
        raise InvalidRequest('missing source id')
    filter_id = data.get('filterId')
    if isinstance(filter_id, bool) or not isinstance(filter_id, (str, int, type(None))):
        raise InvalidRequest('filterId must be a string or an integer')
    keyword = data.get('keyword')
    if not isinstance(keyword, (str, type(None))):
        raise InvalidRequest('keyword must be a string')
    return ListQuery(source_id.strip(),
                     str(filter_id) if filter_id not in (None, '') else None,
                     (keyword or '').strip() or None)


def wait_outcome(future):
    try:
        return future.result(timeout=config.request_timeout + OUTCOME_GRACE).value
    except FutureTimeout:
        return 'pending'


def view_response(view_id, loader, outcome, since=0):
    snap = loader.snapshot(since)
    snap.update(view_id=view_id, outcome=outcome)
    return jsonify(snap)


@app.before_request
def sweep_sessions():
    now = time.monotonic()
    if now - _last_sweep[0] >= SWEEP_INTERVAL:
        _last_sweep[0] = now
        expired = registry.sweep()
        if expired:
            log.info('Expired %d idle sessions', expired)


@app.after_request
def add_cors_headers(resp):
    if request.path.startswith('/api/'):
        resp.headers['Access-Control-Allow-Origin'] = '*'
        resp.headers['Access-Control-Allow-Methods'] = 'GET, POST, DELETE, OPTIONS'
        resp.headers['Access-Control-Allow-Headers'] = 'Content-Type'
    return resp


@app.errorhandler(InvalidRequest)
def invalid_request(e):
    return api_error(400, str(e))


@app.errorhandler(UnknownSourceError)
def unknown_source(e):
    return api_error(404, str(e))


@app.errorhandler(GatewayError)
def gateway_failed(e):
    log.warning('Upstream request failed: %s', e)
    return api_error(500, f'upstream request failed: {e}')


# --- ROUTES ---
@app.route('/api/test')
def api_test():
    return jsonify({
        "message": "Sources API is working",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


@app.route('/api/site')
def site_info():
    state = current_session()
    seen = state.prefs['announcement_seen']
    return jsonify({
        "site_name": config.site_name,
        "announcement": config.announcement,
        "show_announcement": bool(config.announcement) and seen != config.announcement,
    })


@app.route('/api/site/announcement', methods=['POST'])
def announcement_seen():
    current_session().prefs['announcement_seen'] = config.announcement
    return jsonify({"success": True})


@app.route('/api/prefs', methods=['GET', 'POST'])
def prefs():
    state = current_session()
    if request.method == 'POST':
        data = json_body()
        if 'sidebar_collapsed' in data:
            state.prefs['sidebar_collapsed'] = bool(data['sidebar_collapsed'])
    return jsonify(state.prefs)


@app.route('/api/session', methods=['DELETE'])
def end_session():
    sid = session.pop('sid', None)
    ended = registry.end(sid) if sid else False
    return jsonify({"success": True, "ended": ended})


@app.route('/api/sources', methods=['GET'])
def get_sources():
    action = request.args.get('action', 'list')
    if action == 'list':
        data = [{"id": s.key, "name": s.name, "api": s.api, "detail": s.detail}
                for s in config.enabled_sources()]
        return jsonify({"code": 200, "message": "success", "data": data})

    source_id = request.args.get('source', '')
    if not source_id:
        return api_error(400, 'missing source id')
    src = gateway.source(source_id)
    if action == 'categories':
        categories = gateway.categories(source_id)
        top, children = partition_categories(categories)
        data = {
            "categories": categories,
            "top_level": top,
            "children": {str(k): v for k, v in children.items()},
        }
    elif action == 'videos':
        page = request.args.get('pg', 1, type=int)
        page_size = request.args.get('pagesize', 20, type=int)
        if page < 1 or not 1 <= page_size <= 100:
            return api_error(400, 'pg must be >= 1 and pagesize between 1 and 100')
        data = gateway.videos(source_id, request.args.get('t') or None, page, page_size,
                              request.args.get('wd') or None)
    else:
        return api_error(400, f'unknown action: {action}')
    return jsonify({"code": 200, "message": "success", "data": data,
                    "source": {"id": src.key, "name": src.name}})


@app.route('/api/sources', methods=['POST'])
def proxy_source():
    data = json_body()
    source_id = data.get('sourceId')
    if not isinstance(source_id, str) or not source_id:
        return api_error(400, 'missing source id')
    action = data.get('action')
    if action not in ('categories', 'videos'):
        return api_error(400, f'unknown action: {action}')
    params = data.get('params') or {}
    if not isinstance(params, dict):
        return api_error(400, 'params must be an object')
    src, upstream = gateway.raw(source_id, action, params)
    return jsonify({"code": 200, "message": "success", "data": upstream,
                    "source": {"id": src.key, "name": src.name}})


@app.route('/api/categories')
def browse_categories():
    kind = request.args.get('kind', 'movie')
    category = request.args.get('category')
    tag = request.args.get('type')
    if not kind or not category or not tag:
        return api_error(400, 'kind, category and type are required')
    limit = request.args.get('limit', 20, type=int)
    start = request.args.get('start', 0, type=int)
    if not 1 <= limit <= 100:
        return api_error(400, 'limit must be between 1 and 100')
    if start < 0:
        return api_error(400, 'start must not be negative')
    page = start // limit + 1
    videos = gateway.browse_catalog(category, tag, page, limit, request.args.get('source') or None)
    resp = jsonify({"code": 200, "message": "success", "list": videos})
    cache = f'public, max-age={config.cache_time}, s-maxage={config.cache_time}'
    resp.headers['Cache-Control'] = cache
    resp.headers['CDN-Cache-Control'] = f'public, s-maxage={config.cache_time}'
    return resp


@app.route('/api/home')
def home_feed():
    return jsonify({"rows": gateway.home_feed()})


@app.route('/api/browse', methods=['POST'])
def open_view():
    query = query_from(json_body())
    gateway.source(query.source_id)
    view_id, loader = current_session().open_view(query)
    return view_response(view_id, loader, 'reset')


def _view_or_404(view_id):
    loader = current_session().view(view_id)
    if loader is None:
        return None, api_error(404, 'unknown view')
    return loader, None


@app.route('/api/browse/<view_id>', methods=['GET'])
def view_state(view_id):
    loader, err = _view_or_404(view_id)
    if err:
        return err
    since = max(request.args.get('since', 0, type=int), 0)
    return view_response(view_id, loader, None, since)


@app.route('/api/browse/<view_id>', methods=['DELETE'])
def close_view(view_id):
    closed = current_session().close_view(view_id)
    return jsonify({"success": closed})


@app.route('/api/browse/<view_id>/reset', methods=['POST'])
def reset_view(view_id):
    loader, err = _view_or_404(view_id)
    if err:
        return err
    query = query_from(json_body())
    gateway.source(query.source_id)
    loader.reset(query)
    return view_response(view_id, loader, 'reset')


@app.route('/api/browse/<view_id>/next', methods=['POST'])
@app.route('/api/browse/<view_id>/scroll', methods=['POST'])
def advance_view(view_id):
    loader, err = _view_or_404(view_id)
    if err:
        return err
    data = json_body()
    try:
        since = max(int(data.get('since', 0)), 0)
    except (TypeError, ValueError):
        return api_error(400, 'since must be an integer')
    if request.path.endswith('/scroll'):
        future = loader.trigger_from_scroll_signal()
    else:
        future = loader.load_next()
    return view_response(view_id, loader, wait_outcome(future), since)


@app.route('/api/favorites', methods=['GET'])
def get_favorites():
    return jsonify({"videos": current_session().library.favorites()})


@app.route('/api/favorites', methods=['POST'])
def toggle_favorite():
    data = json_body()
    video = data.get('video')
    if not isinstance(video, dict) or not video.get('id') or not video.get('source'):
        return api_error(400, 'video with id and source required')
    return jsonify({"favorited": current_session().library.toggle_favorite(video)})


@app.route('/api/favorites', methods=['DELETE'])
def clear_favorites():
    current_session().library.clear_favorites()
    return jsonify({"success": True})


@app.route('/api/is_favorite')
def is_favorite():
    source = request.args.get('source')
    vid_id = request.args.get('id')
    if not source or not vid_id:
        return jsonify({"favorited": False})
    return jsonify({"favorited": current_session().library.is_favorite(source, vid_id)})


@app.route('/api/play_records', methods=['GET'])
def get_play_records():
    return jsonify({"records": current_session().library.play_records()})


@app.route('/api/play_records', methods=['POST'])
def save_play_record():
    data = json_body()
    record = data.get('record')
    if not isinstance(record, dict) or not record.get('id') or not record.get('source'):
        return api_error(400, 'record with id and source required')
    key = current_session().library.save_play_record(record)
    return jsonify({"success": True, "key": key})


@app.route('/api/play_records/<path:key>', methods=['DELETE'])
def delete_play_record(key):
    return jsonify({"success": current_session().library.delete_play_record(key)})


@app.route('/api/placeholder')
def placeholder():
    text = html.escape(request.args.get('text', '')[:40])
    width = min(max(request.args.get('width', 300, type=int), 1), 2000)
    height = min(max(request.args.get('height', 450, type=int), 1), 2000)
    svg = (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}">'
        f'<rect width="100%" height="100%" fill="#181818"/>'
        f'<text x="50%" y="50%" fill="#777" text-anchor="middle" dy=".3em" font-size="14">{text}</text>'
        f'</svg>'
    )
    resp = Response(svg, mimetype='image/svg+xml')
    resp.headers['Cache-Control'] = f'public, max-age={config.cache_time}'
    return resp


@app.route('/')
def index():
    return render_template_string(HTML_TEMPLATE, site_name=config.site_name)


# --- FRONTEND TEMPLATE ---
HTML_TEMPLATE = r"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0, maximum-scale=1.0, user-scalable=no">
    <meta name="theme-color" content="#0a0a0a">
    <title>{{ site_name }}</title>
    <link rel="stylesheet" href="https://cdnjs.cloudflare.com/ajax/libs/font-awesome/6.5.0/css/all.min.css">
    <style>
        :root {
            --bg: #0a0a0a;
            --surface: #121212;
            --surface2: #1a1a1a;
            --border: rgba(255,255,255,0.07);
            --accent: #3b82f6;
            --accent-glow: rgba(59,130,246,0.3);
            --text: #ececec;
            --text-muted: #8a8a8a;
            --text-dim: #444;
            --gold: #d4af37;
            --radius: 10px;
        }
        * { box-sizing: border-box; margin: 0; padding: 0; -webkit-tap-highlight-color: transparent; }
        body { background: var(--bg); color: var(--text); font-family: system-ui, sans-serif; font-size: 14px; padding-bottom: 80px; min-height: 100vh; }
        body.sidebar-collapsed .source-bar { display: none; }
        .hidden { display: none !important; }

        header { position: sticky; top: 0; background: rgba(10,10,10,0.95); z-index: 200; border-bottom: 1px solid var(--border); backdrop-filter: blur(20px); }
        .header-top { display: flex; align-items: center; justify-content: space-between; padding: 12px 16px; gap: 12px; }
        .logo { font-size: 22px; font-weight: 800; color: var(--accent); cursor: pointer; flex-shrink: 0; }
        .search-wrap { flex: 1; position: relative; max-width: 400px; }
        .search-wrap i { position: absolute; left: 12px; top: 50%; transform: translateY(-50%); color: var(--text-muted); font-size: 13px; pointer-events: none; }
        .search-input { width: 100%; background: var(--surface2); border: 1px solid var(--border); border-radius: 50px; padding: 9px 16px 9px 36px; color: var(--text); font-size: 13px; outline: none; }
        .search-input:focus { border-color: var(--accent); box-shadow: 0 0 0 3px var(--accent-glow); }
        .icon-btn { background: var(--surface2); border: 1px solid var(--border); color: var(--text-muted); width: 36px; height: 36px; border-radius: 50%; display: flex; align-items: center; justify-content: center; cursor: pointer; }

        .pill-bar { display: flex; gap: 4px; overflow-x: auto; padding: 0 12px 10px; scrollbar-width: none; }
        .pill-bar::-webkit-scrollbar { display: none; }
        .pill { padding: 6px 14px; border-radius: 50px; font-size: 12px; font-weight: 600; cursor: pointer; border: 1px solid var(--border); color: var(--text-muted); background: transparent; white-space: nowrap; }
        .pill.active { background: var(--accent); color: white; border-color: var(--accent); }
        .pill.child { font-size: 11px; padding: 4px 10px; }

        .section-title { display: flex; align-items: center; gap: 8px; padding: 20px 16px 12px; }
        .section-title h2 { font-size: 17px; font-weight: 700; }
        .section-title .more { margin-left: auto; color: var(--accent); font-size: 12px; cursor: pointer; }
        .row-scroll { display: flex; gap: 10px; overflow-x: auto; padding: 0 16px 16px; scrollbar-width: none; }
        .row-scroll::-webkit-scrollbar { display: none; }
        .row-scroll .video-card { flex-shrink: 0; width: 130px; }

        .main-grid { display: grid; grid-template-columns: repeat(3, 1fr); gap: 10px; padding: 12px; }
        @media(min-width: 768px) { .main-grid { grid-template-columns: repeat(5, 1fr); } }
        @media(min-width: 1024px) { .main-grid { grid-template-columns: repeat(7, 1fr); } }

        .video-card { cursor: pointer; position: relative; }
        .video-card .thumb-wrap { position: relative; border-radius: var(--radius); overflow: hidden; aspect-ratio: 2/3; background: var(--surface2); }
        .video-card img { width: 100%; height: 100%; object-fit: cover; display: block; }
        .video-card .remarks-badge { position: absolute; bottom: 6px; right: 6px; background: rgba(0,0,0,0.85); color: white; font-size: 10px; padding: 2px 6px; border-radius: 4px; }
        .video-card .fav-btn { position: absolute; top: 6px; right: 6px; width: 28px; height: 28px; background: rgba(0,0,0,0.7); border: none; border-radius: 50%; color: white; cursor: pointer; }
        .fav-btn.favorited { color: #ff4466; }
        .video-card .card-title { font-size: 12px; font-weight: 500; padding-top: 6px; overflow: hidden; white-space: nowrap; text-overflow: ellipsis; }
        .video-card .card-meta { font-size: 10px; color: var(--text-muted); margin-top: 2px; }

        .list-footer { display: flex; justify-content: center; padding: 24px; color: var(--text-muted); font-size: 13px; }
        .retry-btn { background: var(--surface2); border: 1px solid var(--border); color: var(--text); padding: 10px 28px; border-radius: 50px; cursor: pointer; }
        .spinner { width: 28px; height: 28px; border: 3px solid var(--surface2); border-top-color: var(--accent); border-radius: 50%; animation: spin 0.7s linear infinite; }
        @keyframes spin { to { transform: rotate(360deg); } }
        #scroll-sentinel { height: 1px; width: 100%; }

        .modal-backdrop { position: fixed; inset: 0; background: rgba(0,0,0,0.85); z-index: 800; display: flex; align-items: center; justify-content: center; padding: 20px; }
        .modal-box { background: var(--surface); border: 1px solid var(--border); border-radius: 16px; width: 100%; max-width: 420px; padding: 24px; position: relative; }
        .modal-box img { width: 120px; border-radius: 8px; float: left; margin-right: 16px; }
        .modal-box h2 { font-size: 18px; margin-bottom: 8px; }
        .modal-box .meta { color: var(--text-muted); font-size: 12px; margin-bottom: 16px; }
        .modal-actions { clear: both; display: flex; gap: 8px; padding-top: 16px; }
        .modal-actions button { flex: 1; padding: 10px; border-radius: 8px; border: 1px solid var(--border); background: var(--surface2); color: var(--text); cursor: pointer; }
        .modal-actions button.primary { background: var(--accent); border-color: var(--accent); }

        #toast { position: fixed; bottom: 90px; left: 50%; transform: translateX(-50%); background: var(--surface2); border: 1px solid var(--border); padding: 10px 20px; border-radius: 50px; font-size: 13px; z-index: 9999; opacity: 0; transition: opacity 0.3s; pointer-events: none; }
        #toast.show { opacity: 1; }

        .bottom-nav { position: fixed; bottom: 0; left: 0; right: 0; background: rgba(10,10,10,0.97); border-top: 1px solid var(--border); display: flex; z-index: 400; }
        .nav-item { flex: 1; display: flex; flex-direction: column; align-items: center; padding: 10px 4px 12px; cursor: pointer; color: var(--text-muted); font-size: 10px; gap: 4px; }
        .nav-item i { font-size: 18px; }
        .nav-item.active { color: var(--accent); }

        .view { display: none; }
        .view.active { display: block; }
        .empty-state { text-align: center; padding: 60px 20px; color: var(--text-muted); }
    </style>
</head>
<body>

<div id="toast"><span id="toast-msg"></span></div>

<header>
    <div class="header-top">
        <div class="logo" onclick="showView('home')">{{ site_name }}</div>
        <div class="search-wrap">
            <i class="fa fa-magnifying-glass"></i>
            <input type="text" class="search-input" id="search-input" placeholder="Search the selected source..." autocomplete="off" oninput="debounceSearch(this.value)">
        </div>
        <div class="icon-btn" onclick="toggleSidebar()" title="Toggle source bar"><i class="fa fa-bars"></i></div>
    </div>
    <div class="pill-bar source-bar" id="source-bar"></div>
</header>

<!-- HOME -->
<div class="view active" id="view-home">
    <div id="continue-section" class="hidden">
        <div class="section-title"><h2>Continue Watching</h2></div>
        <div class="row-scroll" id="continue-row"></div>
    </div>
    <div id="home-rows"><div class="list-footer"><div class="spinner"></div></div></div>
</div>

<!-- SOURCE BROWSER -->
<div class="view" id="view-browse">
    <div class="section-title"><h2 id="browse-title"></h2></div>
    <div class="pill-bar" id="category-bar"></div>
    <div class="pill-bar" id="child-category-bar"></div>
    <div class="main-grid" id="browse-grid"></div>
    <div class="list-footer" id="browse-footer"></div>
    <div id="scroll-sentinel"></div>
</div>

<!-- FAVORITES -->
<div class="view" id="view-favorites">
    <div class="section-title"><h2>My Favorites</h2><span class="more" onclick="clearFavorites()">Clear</span></div>
    <div class="main-grid" id="fav-grid"></div>
    <div class="empty-state hidden" id="fav-empty">No favorites yet.</div>
</div>

<!-- DETAIL MODAL -->
<div class="modal-backdrop hidden" id="detail-modal" onclick="if (event.target === this) closeDetail()">
    <div class="modal-box">
        <img id="detail-poster" src="" alt="">
        <h2 id="detail-title"></h2>
        <div class="meta" id="detail-meta"></div>
        <div class="modal-actions">
            <button class="primary" onclick="markWatching()"><i class="fa fa-play"></i> Watch</button>
            <button id="detail-fav" onclick="toggleDetailFav()"><i class="fa fa-heart"></i> Favorite</button>
        </div>
    </div>
</div>

<!-- ANNOUNCEMENT -->
<div class="modal-backdrop hidden" id="announcement-modal">
    <div class="modal-box">
        <h2>Notice</h2>
        <p id="announcement-text" style="margin: 12px 0; line-height: 1.6;"></p>
        <div class="modal-actions"><button class="primary" onclick="dismissAnnouncement()">Got it</button></div>
    </div>
</div>

<nav class="bottom-nav">
    <div class="nav-item active" id="nav-home" onclick="showView('home')"><i class="fa fa-house"></i><span>Home</span></div>
    <div class="nav-item" id="nav-browse" onclick="showView('browse')"><i class="fa fa-layer-group"></i><span>Sources</span></div>
    <div class="nav-item" id="nav-favorites" onclick="showView('favorites')"><i class="fa fa-heart"></i><span>Favorites</span></div>
</nav>

<script>
// ===== STATE =====
// The server owns paging; the page only tracks which view/generation it renders.
let state = {
    sources: [],
    favorites: new Set(),
    current: null,
    searchTimeout: null,
    browse: { viewId: null, sourceId: null, filterId: null, keyword: null, generation: 0, total: 0, busy: false, pollTimer: null }
};

async function api(url, opts = {}) {
    if (opts.body && typeof opts.body !== 'string') {
        opts.body = JSON.stringify(opts.body);
        opts.headers = { 'Content-Type': 'application/json' };
    }
    const r = await fetch(url, opts);
    return r.json();
}

function showToast(msg) {
    const t = document.getElementById('toast');
    document.getElementById('toast-msg').textContent = msg;
    t.className = 'show';
    clearTimeout(t._timeout);
    t._timeout = setTimeout(() => t.className = '', 2500);
}

// ===== INIT =====
async function init() {
    const prefs = await api('/api/prefs');
    document.body.classList.toggle('sidebar-collapsed', !!prefs.sidebar_collapsed);
    await loadSources();
    loadFavoriteIds();
    loadHome();
    checkAnnouncement();
    setupInfiniteScroll();
}

async function checkAnnouncement() {
    const site = await api('/api/site');
    if (!site.show_announcement) return;
    document.getElementById('announcement-text').textContent = site.announcement;
    document.getElementById('announcement-modal').classList.remove('hidden');
}

async function dismissAnnouncement() {
    document.getElementById('announcement-modal').classList.add('hidden');
    await api('/api/site/announcement', { method: 'POST' });
}

async function toggleSidebar() {
    const collapsed = !document.body.classList.contains('sidebar-collapsed');
    document.body.classList.toggle('sidebar-collapsed', collapsed);
    await api('/api/prefs', { method: 'POST', body: { sidebar_collapsed: collapsed } });
}

function showView(name) {
    ['home', 'browse', 'favorites'].forEach(v => {
        document.getElementById(`view-${v}`).classList.toggle('active', v === name);
        document.getElementById(`nav-${v}`).classList.toggle('active', v === name);
    });
    if (name === 'favorites') loadFavoritesPage();
    if (name === 'home') loadContinueWatching();
    if (name === 'browse' && !state.browse.viewId && state.sources.length) openSource(state.sources[0].id);
    window.scrollTo({ top: 0 });
}

// ===== SOURCES =====
async function loadSources() {
    try {
        const r = await api('/api/sources');
        state.sources = r.code === 200 ? r.data : [];
    } catch (e) { state.sources = []; }
    document.getElementById('source-bar').innerHTML = state.sources.map(s =>
        `<div class="pill" data-source="${escHtml(s.id)}" onclick="openSource('${escHtml(s.id)}')">${escHtml(s.name)}</div>`
    ).join('');
}

async function openSource(sourceId) {
    showView('browse');
    document.querySelectorAll('#source-bar .pill').forEach(p => p.classList.toggle('active', p.dataset.source === sourceId));
    const src = state.sources.find(s => s.id === sourceId);
    document.getElementById('browse-title').textContent = src ? src.name : sourceId;
    document.getElementById('search-input').value = '';
    await resetBrowse({ sourceId, filterId: null, keyword: null });
    loadCategories(sourceId);
}

async function loadCategories(sourceId) {
    const bar = document.getElementById('category-bar');
    const childBar = document.getElementById('child-category-bar');
    bar.innerHTML = '';
    childBar.innerHTML = '';
    try {
        const r = await api(`/api/sources?action=categories&source=${encodeURIComponent(sourceId)}`);
        if (r.code !== 200 || state.browse.sourceId !== sourceId) return;
        state.children = r.data.children || {};
        bar.innerHTML = `<div class="pill active" onclick="selectCategory(null, this)">All</div>` +
            r.data.top_level.map(c => `<div class="pill" onclick="selectCategory(${c.type_id}, this)">${escHtml(c.name)}</div>`).join('');
    } catch (e) { console.error(e); }
}

function selectCategory(typeId, el) {
    el.parentElement.querySelectorAll('.pill').forEach(p => p.classList.remove('active'));
    el.classList.add('active');
    if (el.parentElement.id === 'category-bar') {
        const kids = (state.children || {})[String(typeId)] || [];
        document.getElementById('child-category-bar').innerHTML = kids.map(c =>
            `<div class="pill child" onclick="selectCategory(${c.type_id}, this)">${escHtml(c.name)}</div>`).join('');
    }
    resetBrowse({ sourceId: state.browse.sourceId, filterId: typeId, keyword: state.browse.keyword });
}

// ===== INCREMENTAL LIST =====
async function resetBrowse(query) {
    const b = state.browse;
    Object.assign(b, query);
    document.getElementById('browse-grid').innerHTML = '';
    renderFooter({ status: 'loading_first_page', has_more: true, total: 0 });
    let r;
    if (!b.viewId) {
        r = await api('/api/browse', { method: 'POST', body: query });
    } else {
        r = await api(`/api/browse/${b.viewId}/reset`, { method: 'POST', body: query });
        if (r.code === 404) r = await api('/api/browse', { method: 'POST', body: query });
    }
    if (!r.view_id) { renderFooter({ status: 'error', error: r.message }); return; }
    b.viewId = r.view_id;
    b.generation = r.generation;
    b.total = 0;
    await advance('next');
}

async function advance(kind) {
    const b = state.browse;
    if (!b.viewId) return;
    const generation = b.generation;
    b.busy = true;
    try {
        const r = await api(`/api/browse/${b.viewId}/${kind}`, { method: 'POST', body: { since: b.total } });
        applyBrowse(r, generation);
    } catch (e) {
        renderFooter({ status: 'error', error: String(e) });
    } finally {
        b.busy = false;
    }
}

function applyBrowse(r, generation) {
    const b = state.browse;
    // Responses for a superseded query are ignored.
    if (r.generation !== b.generation || generation !== b.generation) return;
    if (r.since === b.total && r.items.length) {
        renderGrid('browse-grid', r.items, true);
        b.total = r.total;
    }
    renderFooter(r);
    // A load still in flight server-side is picked up from the view snapshot.
    if (r.status === 'loading_first_page' || r.status === 'loading_more') {
        clearTimeout(b.pollTimer);
        b.pollTimer = setTimeout(() => pollBrowse(generation), 1000);
    }
}

async function pollBrowse(generation) {
    const b = state.browse;
    if (!b.viewId || generation !== b.generation) return;
    try {
        applyBrowse(await api(`/api/browse/${b.viewId}?since=${b.total}`), generation);
    } catch (e) {
        renderFooter({ status: 'error', error: String(e) });
    }
}

function renderFooter(s) {
    const footer = document.getElementById('browse-footer');
    if (s.status === 'loading_first_page' || s.status === 'loading_more') {
        footer.innerHTML = '<div class="spinner"></div>';
    } else if (s.status === 'error') {
        footer.innerHTML = `<button class="retry-btn" onclick="advance('next')">Load failed. Retry</button>`;
    } else if (!s.has_more) {
        footer.textContent = s.total ? 'Everything is loaded' : 'No videos in this source';
    } else {
        footer.innerHTML = '';
    }
}

function setupInfiniteScroll() {
    const sentinel = document.getElementById('scroll-sentinel');
    const observer = new IntersectionObserver((entries) => {
        if (entries[0].isIntersecting && !state.browse.busy) advance('scroll');
    }, { rootMargin: '300px' });
    observer.observe(sentinel);
}

function debounceSearch(val) {
    clearTimeout(state.searchTimeout);
    state.searchTimeout = setTimeout(() => {
        const b = state.browse;
        const sourceId = b.sourceId || (state.sources[0] && state.sources[0].id);
        if (!sourceId) return;
        if (!document.getElementById('view-browse').classList.contains('active')) showView('browse');
        resetBrowse({ sourceId, filterId: b.filterId, keyword: val.trim() || null });
    }, 500);
}

// ===== HOME =====
async function loadHome() {
    const wrap = document.getElementById('home-rows');
    try {
        const r = await api('/api/home');
        wrap.innerHTML = '';
        r.rows.forEach((row, i) => {
            const section = document.createElement('div');
            section.innerHTML = `
                <div class="section-title"><h2>${escHtml(row.source.name)}</h2>
                <span class="more" onclick="openSource('${escHtml(row.source.id)}')">More &rsaquo;</span></div>
                <div class="row-scroll" id="home-row-${i}"></div>`;
            wrap.appendChild(section);
            renderGrid(`home-row-${i}`, row.videos, false);
        });
        if (!r.rows.length) wrap.innerHTML = '<div class="empty-state">No sources configured.</div>';
    } catch (e) {
        wrap.innerHTML = '<div class="empty-state">Failed to load the home page.</div>';
    }
    loadContinueWatching();
}

async function loadContinueWatching() {
    const r = await api('/api/play_records');
    const records = r.records || [];
    document.getElementById('continue-section').classList.toggle('hidden', !records.length);
    renderGrid('continue-row', records, false);
}

// ===== FAVORITES =====
async function loadFavoriteIds() {
    const r = await api('/api/favorites');
    state.favorites = new Set((r.videos || []).map(v => v.key));
}

async function loadFavoritesPage() {
    const r = await api('/api/favorites');
    const videos = r.videos || [];
    document.getElementById('fav-empty').classList.toggle('hidden', videos.length > 0);
    renderGrid('fav-grid', videos, false);
}

async function clearFavorites() {
    await api('/api/favorites', { method: 'DELETE' });
    state.favorites.clear();
    loadFavoritesPage();
}

async function toggleFav(video) {
    const r = await api('/api/favorites', { method: 'POST', body: { video } });
    const key = `${video.source}+${video.id}`;
    if (r.favorited) state.favorites.add(key); else state.favorites.delete(key);
    showToast(r.favorited ? 'Added to favorites' : 'Removed from favorites');
    return r.favorited;
}

// ===== RENDER =====
function renderGrid(id, videos, append) {
    const grid = document.getElementById(id);
    if (!append) grid.innerHTML = '';
    videos.forEach(v => {
        const card = document.createElement('div');
        card.className = 'video-card';
        const isFav = state.favorites.has(`${v.source}+${v.id}`);
        card.innerHTML = `
            <div class="thumb-wrap">
                <img src="${escHtml(v.poster)}" alt="" loading="lazy">
                ${v.remarks ? `<div class="remarks-badge">${escHtml(v.remarks)}</div>` : ''}
                <button class="fav-btn ${isFav ? 'favorited' : ''}"><i class="fa fa-heart"></i></button>
            </div>
            <div class="card-title">${escHtml(v.title)}</div>
            <div class="card-meta">${escHtml([v.year, v.type_name].filter(Boolean).join(' · '))}</div>`;
        card.querySelector('.fav-btn').onclick = async (e) => {
            e.stopPropagation();
            e.currentTarget.classList.toggle('favorited', await toggleFav(v));
        };
        card.onclick = () => openDetail(v);
        grid.appendChild(card);
    });
}

// ===== DETAIL =====
function openDetail(video) {
    state.current = video;
    document.getElementById('detail-poster').src = video.poster;
    document.getElementById('detail-title').textContent = video.title;
    document.getElementById('detail-meta').textContent =
        [video.year, video.type_name, video.rating && `★ ${video.rating}`, video.remarks].filter(Boolean).join(' · ');
    document.getElementById('detail-fav').classList.toggle('primary', state.favorites.has(`${video.source}+${video.id}`));
    document.getElementById('detail-modal').classList.remove('hidden');
}

function closeDetail() {
    document.getElementById('detail-modal').classList.add('hidden');
}

async function toggleDetailFav() {
    const fav = await toggleFav(state.current);
    document.getElementById('detail-fav').classList.toggle('primary', fav);
}

async function markWatching() {
    const v = state.current;
    await api('/api/play_records', { method: 'POST', body: { record: {
        id: v.id, source: v.source, title: v.title, poster: v.poster, year: v.year,
        type_name: v.type_name, remarks: v.remarks, index: 1
    } } });
    showToast('Added to Continue Watching');
    closeDetail();
}

function escHtml(s) {
    if (!s) return '';
    return String(s).replace(/&/g,'&amp;').replace(/</g,'&lt;').replace(/>/g,'&gt;').replace(/"/g,'&quot;').replace(/'/g,'&#x27;');
}

window.addEventListener('DOMContentLoaded', init);
</script>
</body>
</html>
"""

if __name__ == '__main__':
    logging.basicConfig(level=os.environ.get('VODHUB_LOG_LEVEL', 'INFO'),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    port = int(os.environ.get('PORT', 8000))
    app.run(host='0.0.0.0', port=port, threaded=True)
