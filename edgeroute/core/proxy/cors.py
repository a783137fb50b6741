# core/proxy/cors.py
"""CORS заголовки для API-bypass прокси"""

from aiohttp import web

ALLOW_METHODS = 'GET, POST, PUT, PATCH, DELETE, OPTIONS'
ALLOW_HEADERS = 'authorization, apikey, content-type, x-client-info, prefer, range, x-upsert'
EXPOSE_HEADERS = 'content-range, range'
PREFLIGHT_MAX_AGE = 86400  # сутки


def cors_headers() -> dict:
    """Заголовки, позволяющие браузерному JS читать ответ с другого origin"""
    return {
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Methods': ALLOW_METHODS,
        'Access-Control-Allow-Headers': ALLOW_HEADERS,
        'Access-Control-Expose-Headers': EXPOSE_HEADERS,
    }


def preflight_response() -> web.Response:
    """Ответ на CORS preflight (OPTIONS) для префикса прокси: 204 без тела"""
    return web.Response(
        status=204,
        headers={
            'Access-Control-Allow-Origin': '*',
            'Access-Control-Allow-Methods': ALLOW_METHODS,
            'Access-Control-Allow-Headers': ALLOW_HEADERS,
            'Access-Control-Max-Age': str(PREFLIGHT_MAX_AGE),
        }
    )
