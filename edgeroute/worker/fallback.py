# worker/fallback.py
import logging
from typing import Awaitable, Callable, Optional, Sequence, Tuple

import httpx

logger = logging.getLogger(__name__)

Attempt = Callable[[], Awaitable[Optional[httpx.Response]]]


def empty_response(status: int = 504, content_type: Optional[str] = None) -> httpx.Response:
    """Пустой ответ-заглушка (504 Gateway Timeout по умолчанию)"""
    headers = {'Content-Type': content_type} if content_type else {}
    return httpx.Response(status, headers=headers)


class FallbackChain:
    """
    Упорядоченная цепочка попыток: слева направо, первая удачная побеждает

    Попытка считается неудачной, если бросила httpx.HTTPError (сетевая ошибка)
    или вернула None (промах кэша, неподходящий статус). Каждая попытка
    выполняется не более одного раза, повторов нет. Если не сработала ни одна,
    возвращается ответ terminal().
    """

    def __init__(self, name: str, attempts: Sequence[Tuple[str, Attempt]],
                 terminal: Callable[[], httpx.Response] = empty_response):
        self.name = name
        self.attempts = list(attempts)
        self.terminal = terminal
        self.resolved_by: Optional[str] = None

    @property
    def names(self) -> list:
        return [label for label, _ in self.attempts]

    async def run(self) -> httpx.Response:
        for label, attempt in self.attempts:
            try:
                response = await attempt()
            except httpx.HTTPError as e:
                logger.warning(f"⚠️ [{self.name}] {label} failed: {e!r}")
                continue

            if response is not None:
                self.resolved_by = label
                logger.debug(f"[{self.name}] resolved by {label}: {response.status_code}")
                return response

            logger.debug(f"[{self.name}] {label}: no usable response")

        self.resolved_by = 'terminal'
        logger.warning(f"❌ [{self.name}] all attempts failed: {self.names}")
        return self.terminal()
