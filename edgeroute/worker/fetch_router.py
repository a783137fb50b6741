# worker/fetch_router.py
"""
Перехват всех исходящих fetch клиента

Порядок решений:
1. dev: alias чистых путей (/feed -> физический файл)
2. запросы к data origin: цепочки обхода в зависимости от окружения и типа ресурса
3. не-GET: сразу в сеть, без кэша
4. чужой origin: в сеть, 504 при ошибке, без кэша
5. документы: network-first
6. остальная статика: cache-first
"""

import json
import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from edgeroute.core.classifier import Category, classify, is_image_path, is_video_path
from edgeroute.worker.fallback import FallbackChain

logger = logging.getLogger(__name__)

_NO_BODY_METHODS = {'GET', 'HEAD'}
_DOCUMENT_CATEGORIES = {Category.DOCUMENT, Category.PREVIEW_POST, Category.PREVIEW_PROFILE}


def is_development_host(host: str) -> bool:
    """Локальный запуск: localhost, loopback, частные сети и *.local"""
    return (host in ('localhost', '127.0.0.1')
            or host.startswith('192.168.')
            or host.startswith('10.')
            or host.endswith('.local'))


class FetchRouter:
    def __init__(self, manager, network: httpx.AsyncClient, config, origin: str, session):
        """
        Args:
            manager: CacheGenerationManager текущей версии
            network: HTTP клиент (сеть)
            config: ConfigManager
            origin: origin приложения, в котором работает клиент
            session: BrowsingSession текущей клиентской сессии
        """
        self.manager = manager
        self.network = network
        self.session = session
        self.origin_url = origin.rstrip('/')
        self.origin = httpx.URL(self.origin_url)
        self.development = is_development_host(self.origin.host)

        self.data_origin = httpx.URL(config.get('origin.url'))
        self.api_prefix = config.get('edge.api_prefix').rstrip('/')
        self.prod_proxy_base = config.get('worker.prod_proxy_base').rstrip('/')
        self.image_cdn = config.get('preview.image_cdn')
        self.aliases = dict(config.get('worker.aliases', {}))

    def _same_origin(self, url: httpx.URL) -> bool:
        return (url.scheme, url.host, url.port) == (self.origin.scheme, self.origin.host, self.origin.port)

    @staticmethod
    def _forward(request: httpx.Request, url) -> httpx.Request:
        """Копия запроса на другой адрес: метод, заголовки и тело (кроме GET/HEAD)"""
        headers = [
            (key, value) for key, value in request.headers.multi_items()
            if key.lower() not in ('host', 'content-length')
        ]
        content = None if request.method in _NO_BODY_METHODS else request.content
        return httpx.Request(request.method, url, headers=headers, content=content)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        """Обрабатывает один перехваченный fetch"""
        url = request.url

        if self.development and self._same_origin(url) and url.path in self.aliases:
            return await self._alias_rewrite(request)

        if url.host == self.data_origin.host:
            return await self._route_data_origin(request)

        if request.method != 'GET':
            return await self.network.send(request)

        if not self._same_origin(url):
            return await self._passthrough(request, 'external')

        classification = classify(
            str(url), request.method,
            headers=request.headers,
            serving_host=self.origin.host,
            api_prefix=self.api_prefix
        )
        if classification.category is Category.PROXY_API:
            # Ответы API меняются постоянно - в кэш их не кладём
            return await self._passthrough(request, 'api')
        if classification.category in _DOCUMENT_CATEGORIES:
            return await self._network_first(request)
        return await self._cache_first(request)

    async def navigate(self, url: str) -> httpx.Response:
        """
        SPA-переход: свежая страница из кэша сессии, иначе обычный fetch документа

        Страницы в кэш сессии кладёт network-first ветка handle().
        """
        page = self.session.pages.get(url)
        if page is not None:
            logger.debug(f"Page cache HIT: {url}")
            return httpx.Response(200, headers={'Content-Type': 'text/html; charset=utf-8'}, content=page)
        return await self.handle(httpx.Request('GET', url, headers={'Accept': 'text/html'}))

    # Alias чистых путей (только dev: на проде их разрешает хостинг)

    async def _alias_rewrite(self, request: httpx.Request) -> httpx.Response:
        physical = self.aliases[request.url.path]
        mapped = request.url.copy_with(path=physical)
        logger.debug(f"Routing clean path: {request.url.path} -> {physical}")

        async def mapped_attempt():
            response = await self.network.send(self._forward(request, mapped))
            return response if response.is_success else None

        chain = FallbackChain('alias', [
            ('physical', mapped_attempt),
            ('original', lambda: self.network.send(request)),
        ])
        return await chain.run()

    # Data origin

    async def _route_data_origin(self, request: httpx.Request) -> httpx.Response:
        url = request.url
        if request.headers.get('Upgrade', '').lower() == 'websocket':
            return await self.network.send(request)

        path_qs = url.raw_path.decode('ascii')
        same_origin_proxy = f"{self.origin_url}{self.api_prefix}{path_qs}"

        if not self.development:
            chain = FallbackChain('origin-proxy', [
                ('same-origin-proxy', lambda: self.network.send(self._forward(request, same_origin_proxy))),
            ])
            return await chain.run()

        if is_image_path(url.path):
            params = urlencode({'url': str(url), 'w': 900, 'fit': 'cover', 'output': 'webp', 'q': 80})
            chain = FallbackChain('dev-image', [
                ('image-cdn', lambda: self.network.get(f"{self.image_cdn}?{params}")),
                ('same-origin-proxy', lambda: self.network.get(same_origin_proxy)),
            ])
            return await chain.run()

        # Локальный сервер не умеет проксировать стриминг и CORS-методы -
        # идём напрямую в продакшн-прокси
        video = is_video_path(url.path)
        chain = FallbackChain('dev-origin', [
            ('production-proxy', lambda: self.network.send(self._forward(request, f"{self.prod_proxy_base}{path_qs}"))),
        ], terminal=lambda: self._typed_error(video))
        return await chain.run()

    @staticmethod
    def _typed_error(video: bool) -> httpx.Response:
        """Ошибка с типом содержимого, которого ждёт вызывающий код"""
        if video:
            return httpx.Response(502, headers={'Content-Type': 'video/mp4', 'Access-Control-Allow-Origin': '*'})
        return httpx.Response(
            502,
            headers={'Content-Type': 'application/json', 'Access-Control-Allow-Origin': '*'},
            content=json.dumps({'error': 'proxy_failed'}).encode()
        )

    # Стратегии для своего origin

    async def _passthrough(self, request: httpx.Request, name: str) -> httpx.Response:
        chain = FallbackChain(name, [('network', lambda: self.network.send(request))])
        return await chain.run()

    async def _from_cache(self, request: httpx.Request) -> Optional[httpx.Response]:
        return await self.manager.get(str(request.url))

    async def _from_network(self, request: httpx.Request, document: bool = False) -> httpx.Response:
        """Сеть; успешный (200) ответ кладётся в текущее поколение кэша"""
        response = await self.network.send(request)
        if response.status_code == 200:
            await self.manager.put(str(request.url), response)
            if document:
                self.session.pages.put(str(request.url), response.content)
        return response

    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        chain = FallbackChain('document', [
            ('network', lambda: self._from_network(request, document=True)),
            ('cache', lambda: self._from_cache(request)),
        ])
        return await chain.run()

    async def _cache_first(self, request: httpx.Request) -> httpx.Response:
        chain = FallbackChain('static', [
            ('cache', lambda: self._from_cache(request)),
            ('network', lambda: self._from_network(request)),
        ])
        return await chain.run()
