# worker/cache_manager.py
"""Версионированный дисковый кэш клиента (одно поколение на версию сборки)"""

import asyncio
import hashlib
import json
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote, unquote

import httpx

logger = logging.getLogger(__name__)

# httpx уже раскодировал тело, длину пересчитает сам
_UNSTORED_HEADERS = {'content-encoding', 'content-length', 'transfer-encoding', 'connection', 'keep-alive'}


class CacheStore:
    """
    Одно поколение кэша: запись на диске на каждый URL

    Запись - один файл (строка JSON с метаданными + тело), который пишется
    во временный файл и подменяется через os.replace, поэтому читатель
    никогда не видит наполовину записанный ответ.
    """

    def __init__(self, name: str, directory: Path):
        self.name = name
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.hits = 0
        self.misses = 0

    @staticmethod
    def generate_key(url: str) -> str:
        """MD5 хеш URL - имя файла записи"""
        return hashlib.md5(url.encode()).hexdigest()

    def _entry_path(self, url: str) -> Path:
        return self.directory / f"{self.generate_key(url)}.entry"

    def match(self, url: str) -> Optional[httpx.Response]:
        """
        Получить ответ из кэша

        Returns:
            httpx.Response или None, если записи нет
        """
        try:
            with open(self._entry_path(url), 'rb') as f:
                meta = json.loads(f.readline())
                body = f.read()
        except FileNotFoundError:
            self.misses += 1
            logger.debug(f"Cache MISS [{self.name}]: {url}")
            return None

        self.hits += 1
        logger.debug(f"Cache HIT [{self.name}]: {url}")
        headers = [(key, value) for key, value in meta['headers']]
        return httpx.Response(meta['status'], headers=headers, content=body)

    def put(self, url: str, response: httpx.Response):
        """Сохранить полностью прочитанный ответ под ключом url (перезаписывает)"""
        meta = {
            'url': url,
            'status': response.status_code,
            'headers': [
                [key, value] for key, value in response.headers.multi_items()
                if key.lower() not in _UNSTORED_HEADERS
            ],
        }
        path = self._entry_path(url)
        tmp_path = path.with_suffix(f".tmp{os.getpid()}")

        with open(tmp_path, 'wb') as f:
            f.write(json.dumps(meta).encode() + b'\n')
            f.write(response.content)
        os.replace(tmp_path, path)
        logger.debug(f"Cache PUT [{self.name}]: {url}")

    def delete(self, url: str) -> bool:
        try:
            self._entry_path(url).unlink()
            return True
        except FileNotFoundError:
            return False

    def keys(self) -> List[str]:
        """URL всех записей поколения"""
        urls = []
        for path in self.directory.glob('*.entry'):
            with open(path, 'rb') as f:
                urls.append(json.loads(f.readline())['url'])
        return sorted(urls)

    def get_stats(self) -> dict:
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0
        return {
            'name': self.name,
            'size': len(self),
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': f"{hit_rate:.1f}%",
        }

    def __len__(self) -> int:
        return sum(1 for _ in self.directory.glob('*.entry'))

    def __contains__(self, url: str) -> bool:
        return self._entry_path(url).exists()


class CacheStorage:
    """Набор именованных поколений кэша под одним корневым каталогом"""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._stores: Dict[str, CacheStore] = {}

    def _directory(self, name: str) -> Path:
        return self.root / quote(name, safe='')

    def open(self, name: str) -> CacheStore:
        """Открывает поколение, создавая его при отсутствии"""
        if name not in self._stores:
            self._stores[name] = CacheStore(name, self._directory(name))
        return self._stores[name]

    def has(self, name: str) -> bool:
        return self._directory(name).is_dir()

    def keys(self) -> List[str]:
        return sorted(unquote(path.name) for path in self.root.iterdir() if path.is_dir())

    def delete(self, name: str) -> bool:
        self._stores.pop(name, None)
        directory = self._directory(name)
        if not directory.is_dir():
            return False
        shutil.rmtree(directory)
        return True


class CacheGenerationManager:
    def __init__(self, storage: CacheStorage, network: httpx.AsyncClient, config, origin: str,
                 development: bool = False, clock=time.time):
        """
        Args:
            storage: дисковое хранилище поколений
            network: HTTP клиент для предзагрузки манифеста
            config: ConfigManager с секцией worker
            origin: origin приложения (например, https://plusopinion.com)
            development: локальный запуск - версия меняется при каждом старте
        """
        self.storage = storage
        self.network = network
        self.origin = origin.rstrip('/')
        self.manifest = list(config.get('worker.manifest', []))
        self.version = str(int(clock() * 1000)) if development else config.get('worker.build_version')
        self.cache_name = f"{config.get('worker.cache_prefix')}-{self.version}"
        self.waiting_skipped = False
        self._store: Optional[CacheStore] = None
        self._activated = asyncio.Event()

    @property
    def activated(self) -> bool:
        return self._activated.is_set()

    def versioned_url(self, path: str) -> str:
        """URL файла манифеста с cache-busting параметром версии"""
        separator = '&' if '?' in path else '?'
        return f"{self.origin}{quote(path, safe='/?&=')}{separator}v={self.version}"

    async def on_install(self) -> int:
        """
        Создаёт поколение текущей версии и предзагружает манифест

        Ошибка отдельного файла логируется и пропускается, установку она не ломает.

        Returns:
            int: количество закэшированных файлов
        """
        logger.info(f"📦 Installing cache generation {self.cache_name}")
        store = self.storage.open(self.cache_name)
        cached = 0

        for path in self.manifest:
            url = self.versioned_url(path)
            try:
                response = await self.network.get(url)
            except httpx.HTTPError as e:
                logger.warning(f"⚠️ Cache miss: {path} ({e!r})")
                continue

            if not response.is_success:
                logger.warning(f"⚠️ Cache miss: {path} (HTTP {response.status_code})")
                continue

            store.put(url, response)
            cached += 1

        logger.info(f"✅ Installed {self.cache_name}: {cached}/{len(self.manifest)} files cached")
        self.skip_waiting()
        return cached

    async def on_activate(self, sessions: Iterable = ()) -> List[str]:
        """
        Удаляет все устаревшие поколения и забирает контроль над открытыми сессиями

        Чтения из кэша начинаются только после завершения очистки.

        Returns:
            list: имена удалённых поколений
        """
        logger.info(f"🔄 Activating {self.cache_name}")
        purged = []
        for name in self.storage.keys():
            if name != self.cache_name:
                self.storage.delete(name)
                purged.append(name)
                logger.info(f"🗑️ Purged stale cache generation: {name}")

        self._store = self.storage.open(self.cache_name)
        for session in sessions:
            session.claim(self.version)

        self._activated.set()
        return purged

    def skip_waiting(self):
        self.waiting_skipped = True

    def handle_message(self, message: dict):
        """Сообщение от страницы: {'action': 'skipWaiting'} активирует ожидающую версию"""
        if message and message.get('action') == 'skipWaiting':
            logger.info("⏭️ skipWaiting requested by client")
            self.skip_waiting()

    async def get(self, key: str) -> Optional[httpx.Response]:
        await self._activated.wait()
        return self._store.match(str(key))

    async def put(self, key: str, response: httpx.Response):
        await self._activated.wait()
        self._store.put(str(key), response)
