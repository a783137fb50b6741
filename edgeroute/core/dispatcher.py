# core/dispatcher.py
"""
Edge dispatcher: одно решение на каждый входящий запрос

Порядок правил задан явно в self.rules и проверяется сверху вниз:
preflight -> proxy -> preview-post -> preview-profile -> bare-preview -> static.
"""

import logging
from collections import Counter
from pathlib import Path
from typing import Awaitable, Callable, NamedTuple

from aiohttp import web
from yarl import URL

from edgeroute.core.classifier import Category, Classification, classify, POST_PREFIX, PROFILE_PREFIX
from edgeroute.core.config_manager import get_config
from edgeroute.core.crawler import is_crawler
from edgeroute.core.origin_client import OriginClient
from edgeroute.core.preview import PreviewEntity, PreviewSynthesizer
from edgeroute.core.proxy import ReverseProxy, preflight_response

logger = logging.getLogger(__name__)


class Rule(NamedTuple):
    name: str
    predicate: Callable[[web.Request, Classification], bool]
    handler: Callable[[web.Request, Classification], Awaitable[web.StreamResponse]]


class EdgeDispatcher:
    def __init__(self, config):
        self.api_prefix = config.get('edge.api_prefix')
        self.landing_path = config.get('edge.landing_path')
        self.static_dir = Path(config.get('edge.static_dir')).resolve()
        self.site_name = config.get('preview.site_name')

        self.origin = OriginClient(config)
        self.proxy = ReverseProxy(self.origin, strip_prefix=self.api_prefix)
        self.synthesizer = PreviewSynthesizer(config, origin_host=self.origin.host)

        self.stats = Counter()
        self.rules = [
            Rule('preflight', self._is_preflight, self._preflight),
            Rule('proxy', self._is_category(Category.PROXY_API), self._proxy),
            Rule('preview-post', self._is_category(Category.PREVIEW_POST), self._preview_post),
            Rule('preview-profile', self._is_category(Category.PREVIEW_PROFILE), self._preview_profile),
            Rule('bare-preview', self._is_bare_preview, self._redirect_landing),
            Rule('static', lambda request, classification: True, self._static),
        ]

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Классифицирует запрос и отдаёт его первому подходящему правилу"""
        classification = classify(
            request.url,
            request.method,
            headers=request.headers,
            serving_host=request.host,
            api_prefix=self.api_prefix
        )

        for rule in self.rules:
            if rule.predicate(request, classification):
                self.stats[rule.name] += 1
                logger.debug(f"{request.method} {request.rel_url} -> {rule.name}")
                return await rule.handler(request, classification)

        raise RuntimeError(f"No rule matched {request.rel_url}")

    async def cleanup(self):
        await self.origin.cleanup()
        logger.info(f"📊 Dispatch statistics: {dict(self.stats)}, proxy: {self.proxy.get_full_stats()}")

    # Предикаты

    @staticmethod
    def _is_category(category: Category):
        def predicate(request, classification):
            return classification.category is category
        return predicate

    @staticmethod
    def _is_preflight(request, classification) -> bool:
        return classification.category is Category.PROXY_API and request.method == 'OPTIONS'

    @staticmethod
    def _is_bare_preview(request, classification) -> bool:
        """/post/ или /profile/ без id - такую ссылку превью не обслуживает"""
        path = request.path
        return any(path.startswith(prefix) for prefix in (POST_PREFIX, PROFILE_PREFIX))

    # Обработчики

    async def _preflight(self, request, classification):
        return preflight_response()

    async def _proxy(self, request, classification):
        return await self.proxy.proxy(request)

    async def _preview_post(self, request, classification):
        return await self._preview(request, classification.param, self.origin.fetch_post, PreviewEntity.from_post)

    async def _preview_profile(self, request, classification):
        return await self._preview(request, classification.param, self.origin.fetch_profile, PreviewEntity.from_profile)

    async def _preview(self, request, key, fetch, build):
        """
        Загружает сущность и строит превью

        Любая ошибка здесь превращается в редирект на landing: сломанное превью
        не должно отдавать 500 ни человеку, ни краулеру.
        """
        try:
            record = await fetch(key)
            if record is None:
                return await self._redirect_landing(request)

            entity = build(record, key, site_name=self.site_name)
            crawler = is_crawler(request.headers.get('User-Agent'))
            return self.synthesizer.synthesize(entity, crawler)

        except Exception as e:
            logger.error(f"❌ Preview {request.path} failed, redirecting to landing: {e!r}", exc_info=True)
            return await self._redirect_landing(request)

    async def _redirect_landing(self, request, classification=None):
        location = request.url.join(URL(self.landing_path))
        return web.Response(status=302, headers={'Location': str(location)})

    async def _static(self, request, classification):
        """Отдаёт файл из static_dir; выход за пределы каталога - 404"""
        if request.method not in ('GET', 'HEAD'):
            return web.Response(status=405, text='Method Not Allowed')

        relative = request.path.lstrip('/')
        if not relative or relative.endswith('/'):
            relative += 'index.html'

        candidate = (self.static_dir / relative).resolve()
        if not candidate.is_relative_to(self.static_dir) or not candidate.is_file():
            return web.Response(status=404, text='Not Found')

        return web.FileResponse(candidate)


DISPATCHER_KEY = web.AppKey('dispatcher', EdgeDispatcher)


async def _on_cleanup(app: web.Application):
    await app[DISPATCHER_KEY].cleanup()


def create_app(config=None) -> web.Application:
    """Создаёт aiohttp приложение edge-сервера с единственным catch-all маршрутом"""
    config = config or get_config()
    dispatcher = EdgeDispatcher(config)

    app = web.Application()
    app[DISPATCHER_KEY] = dispatcher
    app.router.add_route('*', '/{path:.*}', dispatcher.handle)
    app.on_cleanup.append(_on_cleanup)
    return app
