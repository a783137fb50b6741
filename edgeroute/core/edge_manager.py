# edge_manager.py
import asyncio
import logging
import time
import threading
from typing import Optional

from aiohttp import web

from edgeroute.core.config_manager import get_config
from edgeroute.core.dispatcher import DISPATCHER_KEY, create_app
from edgeroute.utils.port_utils import check_port_availability, get_process_using_port

logger = logging.getLogger(__name__)


class EdgeManager:
    def __init__(self, config=None):
        self.config = config or get_config()
        self.is_running = False
        self.host = self.config.get('edge.host', '127.0.0.1')
        self.port = self.config.get('edge.port', 8787)
        self.app: Optional[web.Application] = None
        self.runner = None
        self.site = None
        self.loop = None
        self.thread = None

        # Error tracking
        self.last_error_type = None  # 'port', 'tls', 'startup'
        self.last_error_details = None

    def start(self) -> bool:
        """
        Запуск edge-сервера в отдельном потоке со своим event loop

        Returns:
            bool: True если сервер успешно запущен
        """
        if self.is_running:
            logger.warning("⚠️ Edge уже запущен")
            return False

        port_available, port_message = check_port_availability(self.port, self.host)
        if not port_available:
            logger.error(f"❌ {port_message}")
            process_info = get_process_using_port(self.port)
            if process_info:
                logger.info(
                    f"📌 Процесс на порту {self.port}:\n"
                    f"   PID: {process_info.get('pid')}\n"
                    f"   Name: {process_info.get('name')}"
                )
            self.last_error_type = 'port'
            self.last_error_details = port_message
            return False

        self.thread = threading.Thread(target=self._run_server, daemon=True)
        self.thread.start()

        # Ждём запуска (максимум 5 секунд)
        for _ in range(50):
            if self.is_running or self.last_error_type:
                break
            time.sleep(0.1)

        if not self.is_running:
            logger.error(f"❌ Edge не запустился: {self.last_error_details or 'timeout'}")
            self.stop()
            return False

        scheme = 'https' if self.config.get('edge.tls') else 'http'
        logger.info(f"✅ Edge server started on {scheme}://{self.host}:{self.port}")
        return True

    def _run_server(self):
        """Запускает сервер в отдельном event loop"""
        try:
            self.loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self.loop)
            self.loop.run_until_complete(self._start_server())
            if self.is_running:
                self.loop.run_forever()
        except Exception as e:
            logger.error(f"❌ Ошибка в event loop: {e}")
            self.last_error_type = 'startup'
            self.last_error_details = str(e)
            self.is_running = False
        finally:
            if self.loop:
                self.loop.close()

    async def _start_server(self):
        """Асинхронный запуск сервера"""
        ssl_context = None
        if self.config.get('edge.tls'):
            from edgeroute.core.certificate_manager import CertificateManager

            certificates = CertificateManager()
            if not certificates.ensure_certificates_exist():
                self.last_error_type = 'tls'
                self.last_error_details = 'Не удалось создать самоподписанный сертификат'
                return
            ssl_context = certificates.create_ssl_context()
            logger.info(
                f"🔒 TLS: {certificates.get_certificate_info().get('hosts')}, "
                f"{certificates.get_certificate_days_remaining()} days remaining"
            )

        try:
            self.app = create_app(self.config)
            self.runner = web.AppRunner(self.app, access_log=None)
            await self.runner.setup()

            self.site = web.TCPSite(
                self.runner,
                host=self.host,
                port=self.port,
                ssl_context=ssl_context,
            )
            await self.site.start()
            self.is_running = True

        except OSError as e:
            logger.error(f"❌ Ошибка запуска сервера: {e}")
            self.last_error_type = 'startup'
            self.last_error_details = str(e)
            self.is_running = False

    def stop(self):
        """Остановка edge-сервера"""
        if not self.thread:
            return

        logger.info("🛑 Stopping edge server...")
        self.is_running = False

        if self.loop and self.loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self._stop_server(), self.loop)
            try:
                future.result(timeout=5)
            except Exception as e:
                logger.error(f"❌ Ошибка при остановке сервера: {e}")
            self.loop.call_soon_threadsafe(self.loop.stop)

        if self.thread.is_alive():
            self.thread.join(timeout=5)
        self.thread = None

        logger.info("✅ Edge server stopped")

    async def _stop_server(self):
        """Асинхронная остановка сервера"""
        if self.site:
            await self.site.stop()
        if self.runner:
            # on_cleanup закрывает сессии к origin и пишет статистику
            await self.runner.cleanup()
        self.site = None
        self.runner = None

    def get_status(self) -> dict:
        """Возвращает статус edge-сервера"""
        status = {
            'running': self.is_running,
            'host': self.host,
            'port': self.port,
            'tls': bool(self.config.get('edge.tls')),
        }
        if self.last_error_type:
            status['error'] = {'type': self.last_error_type, 'details': self.last_error_details}
        if self.app is not None and self.is_running:
            dispatcher = self.app[DISPATCHER_KEY]
            status['dispatch_stats'] = dict(dispatcher.stats)
            status['proxy_stats'] = dispatcher.proxy.get_full_stats()
        return status


# Синглтон для глобального доступа
_edge_manager = None


def get_edge_manager() -> EdgeManager:
    """Возвращает глобальный экземпляр EdgeManager"""
    global _edge_manager
    if _edge_manager is None:
        _edge_manager = EdgeManager()
    return _edge_manager
