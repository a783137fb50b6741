# core/proxy/reverse_proxy.py
import asyncio
import logging

from aiohttp import web, WSMsgType, ClientError, ClientConnectorError, WSServerHandshakeError
from multidict import CIMultiDict
from yarl import URL

from edgeroute.core.proxy.cors import cors_headers

logger = logging.getLogger(__name__)

# Hop-by-hop заголовки не пересылаем ни в одну сторону
# Host не пересылаем: aiohttp выставляет его по URL каждого хопа (origin и редирект)
_REQUEST_SKIP = {'host', 'connection', 'content-length', 'transfer-encoding', 'keep-alive'}
_RESPONSE_SKIP = {'content-encoding', 'content-length', 'transfer-encoding', 'connection', 'keep-alive'}
_WS_SKIP = _REQUEST_SKIP | {
    'upgrade', 'sec-websocket-key', 'sec-websocket-version',
    'sec-websocket-extensions', 'sec-websocket-protocol',
}
_NO_BODY_METHODS = {'GET', 'HEAD'}


def is_upgrade_request(request) -> bool:
    """Запрос на WebSocket (realtime подписки data origin)"""
    return request.headers.get('Upgrade', '').lower() == 'websocket'


class ReverseProxy:
    def __init__(self, origin, strip_prefix: str):
        """
        Args:
            origin: OriginClient (базовый URL и общий connection pool)
            strip_prefix: префикс пути, который отрезается перед проксированием
        """
        self.origin = origin
        self.strip_prefix = strip_prefix.rstrip('/')

        # Статистика
        self.stats = {
            'total_requests': 0,
            'total_responses': 0,
            'active_connections': 0,
            'errors': 0
        }

    def target_url(self, request) -> URL:
        """Переписывает адрес запроса на data origin, сохраняя query string"""
        raw_path = request.rel_url.raw_path
        if raw_path.startswith(self.strip_prefix):
            raw_path = raw_path[len(self.strip_prefix):]
        raw_path = raw_path or '/'

        query = request.rel_url.raw_query_string
        base = str(self.origin.base_url).rstrip('/')
        return URL(f"{base}{raw_path}{'?' + query if query else ''}", encoded=True)

    async def proxy(self, request: web.Request) -> web.StreamResponse:
        """Проксирует HTTP или WebSocket запрос на data origin"""
        self.stats['total_requests'] += 1
        self.stats['active_connections'] += 1

        try:
            target = self.target_url(request)
            if is_upgrade_request(request):
                return await self._proxy_websocket(request, target)
            return await self._proxy_http(request, target)
        finally:
            self.stats['active_connections'] -= 1

    async def _proxy_http(self, request: web.Request, target: URL) -> web.Response:
        headers = CIMultiDict()
        for key, value in request.headers.items():
            if key.lower() not in _REQUEST_SKIP:
                headers.add(key, value)

        body = None if request.method in _NO_BODY_METHODS else await request.read()
        logger.debug(f"🔐 Proxying {request.method} {request.rel_url} -> {target}")

        try:
            session = await self.origin.get_session()
            # Один уровень редиректов от origin, дальше - ошибка
            # (aiohttp обрывает цепочку, когда счётчик достигает max_redirects)
            async with session.request(
                method=request.method,
                url=target,
                headers=headers,
                data=body,
                allow_redirects=True,
                max_redirects=2
            ) as upstream_response:
                content = await upstream_response.read()

                response_headers = CIMultiDict()
                for key, value in upstream_response.headers.items():
                    if key.lower() not in _RESPONSE_SKIP:
                        response_headers.add(key, value)
                response_headers.update(cors_headers())

                self.stats['total_responses'] += 1
                logger.debug(f"Origin response: {upstream_response.status}")

                return web.Response(
                    body=content,
                    status=upstream_response.status,
                    headers=response_headers
                )

        except ClientConnectorError as e:
            logger.error(f"❌ Data origin недоступен: {e}")
            return self._error_response(e)
        except (ClientError, asyncio.TimeoutError) as e:
            logger.error(f"❌ Ошибка проксирования {request.method} {target}: {e!r}")
            return self._error_response(e)

    async def _proxy_websocket(self, request: web.Request, target: URL) -> web.StreamResponse:
        """
        Пробрасывает WebSocket: сначала handshake с origin, затем
        двусторонняя пересылка кадров до закрытия любой из сторон
        """
        ws_target = target.with_scheme('wss' if target.scheme == 'https' else 'ws')
        protocols = [
            p.strip() for p in request.headers.get('Sec-WebSocket-Protocol', '').split(',') if p.strip()
        ]
        headers = {k: v for k, v in request.headers.items() if k.lower() not in _WS_SKIP}

        try:
            session = await self.origin.get_session()
            upstream = await session.ws_connect(ws_target, headers=headers, protocols=protocols)
        except (WSServerHandshakeError, ClientError, asyncio.TimeoutError) as e:
            logger.error(f"❌ WebSocket handshake с origin не удался: {e!r}")
            return self._error_response(e)

        downstream = web.WebSocketResponse(protocols=(upstream.protocol,) if upstream.protocol else ())
        await downstream.prepare(request)
        logger.info(f"🔌 WebSocket tunnel opened: {ws_target.path}")

        try:
            await asyncio.gather(
                self._relay(downstream, upstream),
                self._relay(upstream, downstream),
            )
        finally:
            await upstream.close()
            await downstream.close()
            self.stats['total_responses'] += 1
            logger.info(f"🔌 WebSocket tunnel closed: {ws_target.path}")

        return downstream

    @staticmethod
    async def _relay(source, sink):
        async for message in source:
            if sink.closed:
                break
            try:
                if message.type == WSMsgType.TEXT:
                    await sink.send_str(message.data)
                elif message.type == WSMsgType.BINARY:
                    await sink.send_bytes(message.data)
                elif message.type == WSMsgType.ERROR:
                    break
            except ConnectionResetError:
                break
        await sink.close()

    def _error_response(self, error: Exception) -> web.Response:
        """502 со структурированным телом; повторов нет, повторяет клиент"""
        self.stats['errors'] += 1
        return web.json_response(
            {'error': 'Proxy error', 'message': str(error) or error.__class__.__name__},
            status=502,
            headers={'Access-Control-Allow-Origin': '*'}
        )

    def get_full_stats(self):
        """Статистика прокси"""
        return {
            'requests': self.stats['total_requests'],
            'responses': self.stats['total_responses'],
            'active': self.stats['active_connections'],
            'errors': self.stats['errors']
        }
