import httpx
import pytest

from edgeroute.worker.cache_manager import CacheGenerationManager, CacheStorage
from edgeroute.worker.fetch_router import FetchRouter, is_development_host
from edgeroute.worker.session import BrowsingSession

PROD = 'https://plusopinion.com'
DEV = 'http://localhost:5500'
DATA = 'https://origin.example.co'


class FakeNetwork:
    """Маршруты по (host, path); всё остальное - сетевая ошибка"""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def route(self, host, path, status=200, text='', headers=None):
        self.routes[(host, path)] = lambda request: httpx.Response(status, text=text, headers=headers)

    def handler(self, request):
        self.requests.append(request)
        factory = self.routes.get((request.url.host, request.url.path))
        if factory is None:
            raise httpx.ConnectError('offline', request=request)
        return factory(request)

    def hosts(self):
        return [(request.url.host, request.url.path) for request in self.requests]


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
async def make_router(tmp_path, config, network):
    clients = []

    async def factory(origin):
        client = httpx.AsyncClient(transport=httpx.MockTransport(network.handler))
        clients.append(client)
        manager = CacheGenerationManager(CacheStorage(tmp_path / 'caches'), client, config, origin)
        session = BrowsingSession.from_config(config)
        await manager.on_activate([session])
        return FetchRouter(manager, client, config, origin, session)

    yield factory
    for client in clients:
        await client.aclose()


def test_development_hosts():
    for host in ('localhost', '127.0.0.1', '192.168.1.20', '10.0.0.5', 'laptop.local'):
        assert is_development_host(host)
    assert not is_development_host('plusopinion.com')


async def test_documents_are_network_first(make_router, network):
    router = await make_router(PROD)
    network.route('plusopinion.com', '/home.html', text='fresh feed')
    url = f'{PROD}/home.html'

    response = await router.handle(httpx.Request('GET', url))
    assert response.text == 'fresh feed'
    assert (await router.manager.get(url)).text == 'fresh feed'
    assert router.session.pages.get(url) == b'fresh feed'

    # сеть пропала - отдаём последнюю сохранённую копию
    network.routes.clear()
    response = await router.handle(httpx.Request('GET', url))
    assert response.status_code == 200
    assert response.text == 'fresh feed'


async def test_document_offline_without_copy_is_gateway_timeout(make_router):
    router = await make_router(PROD)
    response = await router.handle(httpx.Request('GET', f'{PROD}/feed', headers={'Accept': 'text/html'}))
    assert response.status_code == 504


async def test_error_documents_are_not_stored(make_router, network):
    router = await make_router(PROD)
    network.route('plusopinion.com', '/gone.html', status=404, text='nope')
    response = await router.handle(httpx.Request('GET', f'{PROD}/gone.html'))
    assert response.status_code == 404
    assert await router.manager.get(f'{PROD}/gone.html') is None


async def test_static_assets_are_cache_first(make_router, network):
    router = await make_router(PROD)
    network.route('plusopinion.com', '/app.js', text='v1')
    first = await router.handle(httpx.Request('GET', f'{PROD}/app.js'))
    network.route('plusopinion.com', '/app.js', text='v2')
    second = await router.handle(httpx.Request('GET', f'{PROD}/app.js'))

    assert first.text == 'v1'
    assert second.text == 'v1'
    assert network.hosts().count(('plusopinion.com', '/app.js')) == 1


async def test_static_miss_offline_is_gateway_timeout(make_router):
    router = await make_router(PROD)
    response = await router.handle(httpx.Request('GET', f'{PROD}/global.css'))
    assert response.status_code == 504


async def test_external_requests_are_not_cached(make_router, network):
    router = await make_router(PROD)
    url = 'https://fonts.example.net/inter.woff2'
    network.route('fonts.example.net', '/inter.woff2', text='font')
    assert (await router.handle(httpx.Request('GET', url))).text == 'font'
    assert await router.manager.get(url) is None

    network.routes.clear()
    assert (await router.handle(httpx.Request('GET', url))).status_code == 504


async def test_same_origin_api_reads_bypass_cache(make_router, network):
    router = await make_router(PROD)
    url = f'{PROD}/api-bypass/rest/v1/posts'
    network.route('plusopinion.com', '/api-bypass/rest/v1/posts', text='[]')
    assert (await router.handle(httpx.Request('GET', url))).text == '[]'
    assert await router.manager.get(url) is None


async def test_non_get_goes_straight_to_network(make_router, network):
    router = await make_router(PROD)
    network.route('plusopinion.com', '/api-bypass/rest/v1/posts', status=201, text='created')
    request = httpx.Request('POST', f'{PROD}/api-bypass/rest/v1/posts', content=b'{"a": 1}')
    response = await router.handle(request)
    assert response.status_code == 201
    assert network.requests[-1].content == b'{"a": 1}'

    network.routes.clear()
    with pytest.raises(httpx.ConnectError):
        await router.handle(httpx.Request('POST', f'{PROD}/api-bypass/rest/v1/posts', content=b'{}'))


async def test_production_data_origin_goes_through_same_origin_proxy(make_router, network):
    router = await make_router(PROD)
    network.route('plusopinion.com', '/api-bypass/rest/v1/posts', text='[{"id": 1}]')
    request = httpx.Request(
        'GET', f'{DATA}/rest/v1/posts?select=*&limit=5', headers={'Authorization': 'Bearer user-token'}
    )
    response = await router.handle(request)

    assert response.text == '[{"id": 1}]'
    forwarded = network.requests[-1]
    assert forwarded.url.host == 'plusopinion.com'
    assert forwarded.url.path == '/api-bypass/rest/v1/posts'
    assert forwarded.url.params['select'] == '*'
    assert forwarded.url.params['limit'] == '5'
    assert forwarded.headers['Authorization'] == 'Bearer user-token'


async def test_production_data_origin_failure(make_router):
    router = await make_router(PROD)
    response = await router.handle(httpx.Request('GET', f'{DATA}/rest/v1/posts'))
    assert response.status_code == 504


async def test_data_origin_upgrade_passes_through(make_router, network):
    router = await make_router(PROD)
    network.route('origin.example.co', '/realtime/v1/websocket', status=200)
    request = httpx.Request('GET', f'{DATA}/realtime/v1/websocket', headers={'Upgrade': 'websocket'})
    await router.handle(request)
    assert network.hosts() == [('origin.example.co', '/realtime/v1/websocket')]


async def test_dev_clean_path_alias(make_router, network):
    router = await make_router(DEV)
    network.route('localhost', '/home.html', text='feed page')
    response = await router.handle(httpx.Request('GET', f'{DEV}/feed'))
    assert response.text == 'feed page'
    assert network.hosts() == [('localhost', '/home.html')]


async def test_dev_alias_falls_back_to_original_path(make_router, network):
    router = await make_router(DEV)
    network.route('localhost', '/public-profile.html', status=404)
    network.route('localhost', '/profile', text='original')
    response = await router.handle(httpx.Request('GET', f'{DEV}/profile'))
    assert response.text == 'original'
    assert network.hosts() == [('localhost', '/public-profile.html'), ('localhost', '/profile')]


async def test_aliases_are_ignored_in_production(make_router, network):
    router = await make_router(PROD)
    network.route('plusopinion.com', '/feed', text='hosted rewrite')
    response = await router.handle(httpx.Request('GET', f'{PROD}/feed', headers={'Accept': 'text/html'}))
    assert response.text == 'hosted rewrite'


async def test_dev_images_use_image_cdn(make_router, network):
    router = await make_router(DEV)
    network.route('wsrv.nl', '/', text='webp bytes')
    image = f'{DATA}/storage/v1/object/public/media/photo.png'
    response = await router.handle(httpx.Request('GET', image))

    assert response.text == 'webp bytes'
    params = network.requests[-1].url.params
    assert params['url'] == image
    assert params['w'] == '900'
    assert params['fit'] == 'cover'
    assert params['output'] == 'webp'
    assert params['q'] == '80'


async def test_dev_images_fall_back_to_proxy_then_timeout(make_router, network):
    router = await make_router(DEV)
    image = f'{DATA}/storage/v1/object/public/media/photo.png'
    network.route('localhost', '/api-bypass/storage/v1/object/public/media/photo.png', text='proxied')
    response = await router.handle(httpx.Request('GET', image))
    assert response.text == 'proxied'
    assert network.hosts() == [
        ('wsrv.nl', '/'),
        ('localhost', '/api-bypass/storage/v1/object/public/media/photo.png'),
    ]

    network.routes.clear()
    response = await router.handle(httpx.Request('GET', image))
    assert response.status_code == 504


async def test_dev_data_requests_use_production_proxy(make_router, network):
    router = await make_router(DEV)
    network.route('plusopinion.com', '/api-bypass/rest/v1/posts', text='[]')
    response = await router.handle(httpx.Request('GET', f'{DATA}/rest/v1/posts?select=id'))
    assert response.text == '[]'
    assert network.requests[-1].url.params['select'] == 'id'


async def test_dev_video_failure_is_typed(make_router):
    router = await make_router(DEV)
    response = await router.handle(httpx.Request('GET', f'{DATA}/storage/v1/object/public/media/clip.mp4'))
    assert response.status_code == 502
    assert response.headers['Content-Type'] == 'video/mp4'


async def test_dev_data_failure_is_json(make_router):
    router = await make_router(DEV)
    response = await router.handle(httpx.Request('GET', f'{DATA}/rest/v1/posts'))
    assert response.status_code == 502
    assert response.headers['Content-Type'] == 'application/json'
    assert response.json() == {'error': 'proxy_failed'}


async def test_navigation_prefers_session_pages(make_router, network):
    router = await make_router(PROD)
    network.route('plusopinion.com', '/bookmarks.html', text='bookmarks')
    url = f'{PROD}/bookmarks.html'

    first = await router.navigate(url)
    assert first.text == 'bookmarks'
    assert len(network.requests) == 1

    network.route('plusopinion.com', '/bookmarks.html', text='changed')
    second = await router.navigate(url)
    assert second.text == 'bookmarks'
    assert second.headers['Content-Type'] == 'text/html; charset=utf-8'
    assert len(network.requests) == 1


async def test_navigation_after_session_clear_refetches(make_router, network):
    router = await make_router(PROD)
    network.route('plusopinion.com', '/bookmarks.html', text='bookmarks')
    await router.navigate(f'{PROD}/bookmarks.html')

    router.session.clear()
    network.route('plusopinion.com', '/bookmarks.html', text='fresh')
    response = await router.navigate(f'{PROD}/bookmarks.html')
    assert response.text == 'fresh'
    assert len(network.requests) == 2
