# core/crawler.py
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Подстроки User-Agent социальных ботов, поисковиков и HTTP-утилит (в нижнем регистре)
CRAWLER_SIGNATURES = frozenset({
    'whatsapp', 'telegram', 'twitterbot', 'facebookexternalhit', 'facebot',
    'linkedinbot', 'slackbot', 'discordbot', 'skype', 'googlebot', 'bingbot',
    'iframely', 'embedly', 'outbrain', 'vkshare', 'w3c_validator', 'curl',
    'wget', 'python-requests', 'axios', 'preview',
})


def is_crawler(user_agent: Optional[str]) -> bool:
    """Проверяет, принадлежит ли User-Agent известному краулеру (эвристика, не защита)"""
    if not user_agent:
        return False

    ua = user_agent.lower()
    verdict = any(signature in ua for signature in CRAWLER_SIGNATURES)
    logger.debug(f"🤖 UA verdict: crawler={verdict} ({user_agent[:60]})")
    return verdict
