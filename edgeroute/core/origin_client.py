# core/origin_client.py
"""
Клиент data origin (REST API с выборкой полей через select и фильтром eq)
"""

import logging
from typing import Optional, Dict, Any

from aiohttp import ClientSession, TCPConnector, ClientTimeout, ContentTypeError
from yarl import URL

logger = logging.getLogger(__name__)

POST_SELECT = '*,profiles:user_id(username,full_name,avatar_url,rqs_score)'
PROFILE_SELECT = 'full_name,username,avatar_url,rqs_score,bio,is_verified'


class OriginError(Exception):
    """Data origin вернул ошибку или некорректный payload"""


class OriginClient:
    def __init__(self, config):
        """
        Args:
            config: ConfigManager с секцией origin
        """
        self.base_url = URL(config.get('origin.url').rstrip('/'))
        self.api_key = config.get('origin.api_key', '')
        self.timeout = config.get('origin.timeout', 30)

        # Connection pool для переиспользования соединений
        self.connector = None
        self.session = None

    @property
    def host(self) -> str:
        """Host заголовок для data origin (с портом, если он не стандартный)"""
        if self.base_url.is_default_port():
            return self.base_url.host
        return f"{self.base_url.host}:{self.base_url.port}"

    def credential_headers(self) -> Dict[str, str]:
        """Статические заголовки авторизации из конфигурации"""
        return {
            'apikey': self.api_key,
            'Authorization': f'Bearer {self.api_key}',
            'Accept': 'application/json',
        }

    async def initialize(self):
        """Инициализация connection pool"""
        if self.connector is None:
            self.connector = TCPConnector(
                limit=100,
                ttl_dns_cache=300,
                enable_cleanup_closed=True
            )

        if self.session is None:
            self.session = ClientSession(
                connector=self.connector,
                timeout=ClientTimeout(total=self.timeout, connect=10)
            )

    async def get_session(self) -> ClientSession:
        await self.initialize()
        return self.session

    async def cleanup(self):
        """Очистка ресурсов"""
        if self.session:
            await self.session.close()
            self.session = None
        if self.connector:
            await self.connector.close()
            self.connector = None

    async def fetch_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Загружает пост вместе с профилем автора"""
        return await self._fetch_one('posts', {'id': f'eq.{post_id}', 'select': POST_SELECT})

    async def fetch_profile(self, username: str) -> Optional[Dict[str, Any]]:
        """Загружает публичный профиль по username"""
        return await self._fetch_one('profiles', {'username': f'eq.{username}', 'select': PROFILE_SELECT})

    async def _fetch_one(self, table: str, params: Dict[str, str]) -> Optional[Dict[str, Any]]:
        """
        Выполняет REST-чтение и возвращает первую запись

        Raises:
            OriginError: статус не 2xx или ответ не является JSON-списком
        """
        session = await self.get_session()
        url = self.base_url / 'rest' / 'v1' / table

        async with session.get(url, params=params, headers=self.credential_headers()) as response:
            if response.status >= 300:
                raise OriginError(f"{table}: HTTP {response.status}")
            try:
                records = await response.json()
            except (ContentTypeError, ValueError) as e:
                raise OriginError(f"{table}: malformed payload ({e})") from e

        if not isinstance(records, list):
            raise OriginError(f"{table}: expected a list, got {type(records).__name__}")

        if not records:
            logger.info(f"🔍 {table}: запись не найдена ({params})")
            return None

        if not isinstance(records[0], dict):
            raise OriginError(f"{table}: malformed record")

        return records[0]
