# core/preview.py
"""
Генерация превью-документов для социальных ссылок /post/:id и /profile/:username

Боты (WhatsApp, Telegram, Twitterbot...) читают OpenGraph теги из <head>.
Если отдать им редирект, они уходят по нему и теряют теги, поэтому:
- краулеру отдаём чистый документ с метаданными, без скриптов;
- человеку отдаём те же теги (для неизвестных unfurler'ов) и мгновенный
  клиентский редирект в приложение.
"""

import html
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import quote, urlencode

from aiohttp import web
from yarl import URL

logger = logging.getLogger(__name__)

TEXT_LIMIT = 200

_LINEBREAKS = re.compile(r'[\r\n]+')
# '&' экранируем, только если он ещё не начинает сущность - так повторная санитизация ничего не меняет
_UNSAFE = re.compile(r'&(?!(?:lt|gt|quot|amp|#39);)|[<>"\']')
_ESCAPES = {'<': '&lt;', '>': '&gt;', '"': '&quot;', "'": '&#39;', '&': '&amp;'}
_VIDEO_REFERENCE = re.compile(r'\.(mp4|mov|webm)$', re.IGNORECASE)
_PLACEHOLDER_ICONS = ('icon-512.png',)


def _utf16_prefix(text: str, limit: int) -> str:
    """Самый длинный префикс не длиннее limit единиц UTF-16 (пара суррогатов не разрывается)"""
    units = 0
    for index, char in enumerate(text):
        units += 2 if ord(char) > 0xFFFF else 1
        if units > limit:
            return text[:index]
    return text


def sanitize_text(text: Optional[str], limit: int = TEXT_LIMIT) -> str:
    """
    Готовит пользовательский текст к вставке в HTML

    Args:
        text: исходный текст (None допустим)
        limit: максимальная длина результата в единицах UTF-16

    Returns:
        str: текст без переводов строк, с экранированными < > " ' &, не длиннее limit
    """
    if not text:
        return ''

    text = _LINEBREAKS.sub(' ', str(text))
    text = _UNSAFE.sub(lambda m: _ESCAPES[m.group(0)], text)

    truncated = _utf16_prefix(text, limit)
    if truncated != text:
        text = truncated
        # Не оставляем обрезанную сущность вида "&am"
        amp = text.rfind('&')
        if amp != -1 and ';' not in text[amp:]:
            text = text[:amp]

    return text


def is_video_reference(ref: Optional[str]) -> bool:
    """Ссылка на видео никогда не используется как картинка превью"""
    if not ref:
        return False
    return bool(_VIDEO_REFERENCE.search(URL(ref).path))


@dataclass(frozen=True)
class PreviewEntity:
    """Read-only проекция записи data origin, нужная для превью"""
    kind: str
    identifier: str
    display_name: str
    handle: str
    excerpt: str = ''
    media_url: Optional[str] = None
    avatar_url: Optional[str] = None
    verified: bool = False
    score: Union[int, float] = 0

    @classmethod
    def from_post(cls, record: Dict[str, Any], identifier: str,
                  site_name: str = 'PlusOpinion') -> 'PreviewEntity':
        profile = record.get('profiles') or {}
        if isinstance(profile, list):
            profile = profile[0] if profile else {}

        return cls(
            kind='post',
            identifier=identifier,
            display_name=profile.get('full_name') or f'{site_name} User',
            handle=profile.get('username') or 'user',
            excerpt=record.get('text_content') or '',
            media_url=record.get('media_url') or None,
            avatar_url=profile.get('avatar_url') or None,
            verified=record.get('is_verified_purchase') is True,
            score=profile.get('rqs_score') or 0,
        )

    @classmethod
    def from_profile(cls, record: Dict[str, Any], username: str,
                     site_name: str = 'PlusOpinion') -> 'PreviewEntity':
        return cls(
            kind='profile',
            identifier=username,
            display_name=record.get('full_name') or f'{site_name} User',
            handle=username,
            excerpt=record.get('bio') or '',
            avatar_url=record.get('avatar_url') or None,
            verified=record.get('is_verified') is True,
            score=record.get('rqs_score') or 0,
        )


def select_image(entity: PreviewEntity, fallback: str) -> str:
    """Приоритет: медиа поста (не видео) -> аватар владельца -> fallback"""
    if entity.media_url and not is_video_reference(entity.media_url):
        return entity.media_url
    if entity.avatar_url:
        return entity.avatar_url
    return fallback


class PreviewSynthesizer:
    def __init__(self, config, origin_host: str):
        """
        Args:
            config: ConfigManager с секцией preview
            origin_host: хост data origin (его картинки сжимаются через CDN)
        """
        self.site_name = config.get('preview.site_name')
        self.public_url = config.get('preview.public_url').rstrip('/')
        self.fallback_image = config.get('preview.fallback_image')
        self.avatar_placeholder = config.get('preview.avatar_placeholder')
        self.image_cdn = config.get('preview.image_cdn')
        self.max_age = config.get('preview.max_age', 60)
        self.post_app_path = config.get('preview.post_app_path')
        self.profile_app_path = config.get('preview.profile_app_path')
        self.origin_host = origin_host.split(':')[0].lower()

    @property
    def headers(self) -> Dict[str, str]:
        return {
            'Content-Type': 'text/html; charset=utf-8',
            'Cache-Control': f'public, max-age={self.max_age}, s-maxage={self.max_age}',
        }

    def rewrite_image(self, image: Optional[str]) -> str:
        """
        Подменяет картинку превью на пригодную для unfurler'ов

        WhatsApp отбрасывает картинки тяжелее ~300KB, поэтому файлы data origin
        отдаются через image CDN с фиксированным размером и качеством.
        """
        if not image or image.endswith(_PLACEHOLDER_ICONS):
            return self.fallback_image

        host = (URL(image).host or '').lower()
        if host == self.origin_host or host.endswith('.' + self.origin_host):
            params = urlencode({
                'url': image, 'w': 600, 'h': 600, 'fit': 'cover', 'output': 'jpg', 'q': 70,
            })
            return f"{self.image_cdn}?{params}"

        return image

    def describe(self, entity: PreviewEntity) -> Dict[str, str]:
        """Собирает title/description/url/app_url для сущности"""
        site = sanitize_text(self.site_name)
        name = sanitize_text(entity.display_name)
        handle = sanitize_text(entity.handle)
        text = sanitize_text(entity.excerpt)
        title = f"{name} (@{handle}) · RQS {entity.score} on {site}"

        if entity.kind == 'post':
            if text:
                badge = '✅ Verified Purchase · ' if entity.verified else ''
                description = f"&quot;{text}...&quot; · {badge}Read full opinion on {site}"
            else:
                description = f"See what {name} thinks on {site}"
            canonical = f"{self.public_url}/post/{quote(entity.identifier, safe='')}"
            app_url = f"{self.post_app_path}?{urlencode({'post': entity.identifier})}"
        else:
            if text:
                description = f"{text} · Follow @{handle} on {site}"
            else:
                description = f"See @{handle}&#39;s opinions, reviews and RQS score on {site}"
            canonical = f"{self.public_url}/profile/{quote(entity.identifier, safe='')}"
            app_url = f"{self.profile_app_path}?{urlencode({'username': entity.identifier})}"

        return {
            'title': title,
            'description': description,
            'canonical': canonical,
            'app_url': app_url,
            'type': 'article' if entity.kind == 'post' else 'profile',
        }

    def synthesize(self, entity: PreviewEntity, crawler: bool) -> web.Response:
        """
        Формирует превью-документ

        Args:
            entity: загруженная сущность (пост или профиль)
            crawler: вердикт is_crawler() для User-Agent

        Returns:
            web.Response: 200 text/html с коротким публичным Cache-Control
        """
        meta = self.describe(entity)
        image = html.escape(self.rewrite_image(select_image(entity, self.fallback_image)))

        if crawler:
            document = self._render_crawler(meta, image)
        else:
            document = self._render_human(meta, image)

        logger.info(f"🧩 Preview {entity.kind}={entity.identifier} ({'crawler' if crawler else 'human'})")
        return web.Response(text=document, headers=self.headers)

    def _render_crawler(self, meta: Dict[str, str], image: str) -> str:
        # Без <script>: краулер, не исполняющий JS, всё равно получает все теги
        return f"""<!DOCTYPE html>
<html prefix="og: https://ogp.me/ns#" lang="en">
<head>
    <meta charset="UTF-8">
    <title>{meta['title']}</title>
    <meta name="description" content="{meta['description']}">
    <link rel="canonical" href="{html.escape(meta['canonical'])}">
    <meta property="og:type" content="{meta['type']}">
    <meta property="og:site_name" content="{sanitize_text(self.site_name)}">
    <meta property="og:url" content="{html.escape(meta['canonical'])}">
    <meta property="og:title" content="{meta['title']}">
    <meta property="og:description" content="{meta['description']}">
    <meta property="og:image" itemprop="image" content="{image}">
    <meta property="og:image:alt" content="{sanitize_text(self.site_name)} Preview">
    <meta name="twitter:card" content="summary_large_image">
    <meta name="twitter:title" content="{meta['title']}">
    <meta name="twitter:description" content="{meta['description']}">
    <meta name="twitter:image" content="{image}">
</head>
<body><p>Loading {sanitize_text(self.site_name)}...</p></body>
</html>"""

    def _render_human(self, meta: Dict[str, str], image: str) -> str:
        target = json.dumps(meta['app_url']).replace('<', '\\u003c')
        placeholder = html.escape(self.avatar_placeholder)
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{meta['title']}</title>
    <meta property="og:title" content="{meta['title']}">
    <meta property="og:description" content="{meta['description']}">
    <meta property="og:image" content="{image}">
    <meta name="twitter:card" content="summary_large_image">
    <style>body{{background:#020205;color:#fff;display:flex;align-items:center;justify-content:center;height:100vh;}} .avatar{{width:72px;border-radius:20px;margin-bottom:8px;}} .bar{{width:200px;height:3px;background:rgba(255,255,255,0.1);margin-top:8px;}} .bar-fill{{height:100%;background:linear-gradient(90deg,#2f8bff,#6BFFB6);animation:load 0.8s ease-out forwards;}} @keyframes load{{from{{width:0}}to{{width:100%}}}}</style>
    <script>window.location.replace({target});</script>
</head>
<body><div style="text-align:center"><img class="avatar" src="{image}" onerror="this.src='{placeholder}'"><h3>Redirecting...</h3><div class="bar"><div class="bar-fill"></div></div></div></body>
</html>"""
