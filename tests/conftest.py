import pytest
from aiohttp import web, WSMsgType

from edgeroute.core.config_manager import ConfigManager
from edgeroute.core.dispatcher import create_app

API_KEY = 'test-anon-key'

POSTS = {
    '42': {
        'id': 42,
        'text_content': 'Great <product>!',
        'media_url': None,
        'is_verified_purchase': True,
        'profiles': {
            'username': 'alice',
            'full_name': 'Alice Doe',
            'avatar_url': 'https://cdn.example.org/avatars/alice.png',
            'rqs_score': 87,
        },
    },
    'video': {
        'id': 7,
        'text_content': 'Watch this',
        'media_url': 'https://cdn.example.org/media/clip.MP4',
        'profiles': {'username': 'bob', 'avatar_url': 'https://cdn.example.org/avatars/bob.png'},
    },
}

PROFILES = {
    'alice': {
        'full_name': 'Alice Doe',
        'username': 'alice',
        'avatar_url': 'https://cdn.example.org/avatars/alice.png',
        'rqs_score': 87,
        'bio': 'Reviews\nof\r\nthings & stuff',
        'is_verified': True,
    },
}


def _lookup(table, request, field):
    key = request.query.get(field, '')
    if key.startswith('eq.'):
        key = key[3:]
    if key == 'boom':
        return web.Response(status=500, text='origin exploded')
    if key == 'garbage':
        return web.Response(text='<html>not json</html>', content_type='text/html')
    record = table.get(key)
    return web.json_response([record] if record else [])


def make_origin_app():
    """Фейковый data origin: REST таблицы, echo, редиректы и WebSocket echo"""

    async def posts(request):
        if request.headers.get('apikey') != API_KEY:
            return web.Response(status=401)
        return _lookup(POSTS, request, 'id')

    async def profiles(request):
        if request.headers.get('Authorization') != f'Bearer {API_KEY}':
            return web.Response(status=401)
        return _lookup(PROFILES, request, 'username')

    async def echo(request):
        body = await request.read()
        return web.json_response(
            {
                'method': request.method,
                'path': request.path,
                'query': request.query_string,
                'host': request.headers.get('Host'),
                'authorization': request.headers.get('Authorization'),
                'body': body.decode(),
            },
            headers={'Content-Range': '0-9/100', 'X-Origin': 'yes'}
        )

    async def status(request):
        return web.Response(status=int(request.match_info['code']), text='teapot')

    async def redirect_once(request):
        raise web.HTTPFound('/echo/final')

    async def redirect_to(request):
        raise web.HTTPFound(request.query['url'])

    async def redirect_loop(request):
        raise web.HTTPFound('/redirect-loop')

    async def realtime(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for message in ws:
            if message.type == WSMsgType.TEXT:
                await ws.send_str(f"echo:{message.data}")
            elif message.type == WSMsgType.BINARY:
                await ws.send_bytes(message.data[::-1])
        return ws

    app = web.Application()
    app.router.add_get('/rest/v1/posts', posts)
    app.router.add_get('/rest/v1/profiles', profiles)
    app.router.add_route('*', '/echo/{tail:.*}', echo)
    app.router.add_get('/status/{code}', status)
    app.router.add_get('/redirect-once', redirect_once)
    app.router.add_get('/redirect-loop', redirect_loop)
    app.router.add_get('/redirect-to', redirect_to)
    app.router.add_get('/realtime/v1/websocket', realtime)
    return app


@pytest.fixture
def static_dir(tmp_path):
    public = tmp_path / 'public'
    public.mkdir()
    (public / 'index.html').write_text('<h1>index</h1>')
    (public / 'app.js').write_text('console.log("app");')
    (tmp_path / 'secret.txt').write_text('top secret')
    return public


@pytest.fixture
def config(tmp_path, static_dir):
    cfg = ConfigManager(config_path=tmp_path / 'config.json')
    cfg.set('edge.static_dir', str(static_dir))
    cfg.set('origin.api_key', API_KEY)
    cfg.set('origin.url', 'https://origin.example.co')
    cfg.set('worker.manifest', ['/index.html', '/app.js', '/missing.css'])
    return cfg


@pytest.fixture
async def origin_server(aiohttp_server):
    return await aiohttp_server(make_origin_app())


@pytest.fixture
async def storage_server(aiohttp_server):
    """Второй хост, на который origin отдаёт редиректы (подписанные URL хранилища)"""
    return await aiohttp_server(make_origin_app())


@pytest.fixture
async def edge_client(aiohttp_client, origin_server, config):
    config.set('origin.url', str(origin_server.make_url('')).rstrip('/'))
    return await aiohttp_client(create_app(config))
