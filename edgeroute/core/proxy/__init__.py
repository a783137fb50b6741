# core/proxy/__init__.py
"""
Reverse proxy к data origin.

Все запросы под API-bypass префиксом уходят на origin с отрезанным префиксом;
ответы дополняются CORS заголовками, WebSocket пробрасывается как есть.
"""

from edgeroute.core.proxy.cors import cors_headers, preflight_response
from edgeroute.core.proxy.reverse_proxy import ReverseProxy, is_upgrade_request

__all__ = ['ReverseProxy', 'cors_headers', 'is_upgrade_request', 'preflight_response']
