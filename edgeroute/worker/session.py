# worker/session.py
"""Состояние одной клиентской сессии (живёт до полной перезагрузки страницы)"""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class PageCache:
    """LRU кэш страниц для SPA-навигации с ограничением времени жизни"""

    def __init__(self, maxsize: int = 5, ttl: float = 300, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            maxsize: Максимальное количество страниц
            ttl: Время жизни записи в секундах
            clock: Источник времени (подменяется в тестах)
        """
        self.cache = OrderedDict()
        self.maxsize = maxsize
        self.ttl = ttl
        self.clock = clock
        self.hits = 0
        self.misses = 0

    def get(self, url: str) -> Optional[bytes]:
        """Содержимое страницы или None, если её нет или она устарела"""
        entry = self.cache.get(url)
        if entry is not None:
            content, stored_at = entry
            if self.clock() - stored_at < self.ttl:
                self.hits += 1
                self.cache.move_to_end(url)
                return content
            del self.cache[url]
            logger.debug(f"Page cache EXPIRED: {url}")

        self.misses += 1
        return None

    def put(self, url: str, content: bytes):
        if url in self.cache:
            self.cache.move_to_end(url)
        self.cache[url] = (content, self.clock())

        # Вытесняем самую старую страницу
        if len(self.cache) > self.maxsize:
            evicted_url = self.cache.popitem(last=False)[0]
            logger.debug(f"Page cache EVICT: {evicted_url}")

    def clear(self):
        size_before = len(self.cache)
        self.cache.clear()
        self.hits = 0
        self.misses = 0
        logger.info(f"🗑️ Page cache cleared: {size_before} pages removed")

    def get_stats(self) -> dict:
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0
        return {
            'size': len(self.cache),
            'maxsize': self.maxsize,
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': f"{hit_rate:.1f}%",
        }

    def __len__(self) -> int:
        return len(self.cache)

    def __contains__(self, url: str) -> bool:
        return url in self.cache


class BrowsingSession:
    """
    Явный объект сессии вместо глобальных переменных страницы:
    кэш страниц, позиции прокрутки, отложенный install prompt и версия
    поколения кэша, которое контролирует сессию.
    """

    def __init__(self, page_cache_size: int = 5, page_cache_ttl: float = 300, clock=time.monotonic):
        self.pages = PageCache(maxsize=page_cache_size, ttl=page_cache_ttl, clock=clock)
        self.scroll_positions: Dict[str, int] = {}
        self.deferred_install_prompt: Any = None
        self.controller_version: Optional[str] = None

    @classmethod
    def from_config(cls, config) -> 'BrowsingSession':
        return cls(
            page_cache_size=config.get('worker.page_cache_size', 5),
            page_cache_ttl=config.get('worker.page_cache_ttl', 300),
        )

    def claim(self, version: str):
        """Новое поколение кэша берёт под контроль уже открытую сессию"""
        if self.controller_version != version:
            logger.info(f"🔄 Session claimed: {self.controller_version} -> {version}")
        self.controller_version = version

    def remember_scroll(self, url: str, position: int):
        self.scroll_positions[url] = position

    def scroll_position(self, url: str) -> int:
        return self.scroll_positions.get(url, 0)

    def defer_install_prompt(self, prompt: Any):
        self.deferred_install_prompt = prompt

    def take_install_prompt(self) -> Any:
        """Prompt показывается один раз: забираем и сбрасываем"""
        prompt, self.deferred_install_prompt = self.deferred_install_prompt, None
        return prompt

    def clear(self):
        """Сброс при logout"""
        self.pages.clear()
        self.scroll_positions.clear()
        self.deferred_install_prompt = None
