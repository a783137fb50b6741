# core/classifier.py
"""Классификация запросов по типу ресурса"""

import re
from enum import Enum
from typing import Mapping, NamedTuple, Optional

from yarl import URL

from edgeroute.core.config_manager import API_PREFIX

_VIDEO_PATTERN = re.compile(r'\.(mp4|mov|webm|ogg|avi|mkv|m4v|3gp)(\?|$)', re.IGNORECASE)
_IMAGE_PATTERN = re.compile(r'\.(jpg|jpeg|png|gif|webp|heic|avif|svg|bmp|tiff)(\?|$)', re.IGNORECASE)

POST_PREFIX = '/post/'
PROFILE_PREFIX = '/profile/'


class Category(str, Enum):
    PROXY_API = 'proxy-api'
    PREVIEW_POST = 'social-preview-post'
    PREVIEW_PROFILE = 'social-preview-profile'
    DOCUMENT = 'document'
    STATIC_ASSET = 'static-asset'
    IMAGE = 'image'
    VIDEO = 'video'
    EXTERNAL = 'external'


class Classification(NamedTuple):
    category: Category
    param: Optional[str] = None


def is_video_path(path: str) -> bool:
    """True если путь заканчивается видео-расширением (допускается ?query)"""
    return bool(_VIDEO_PATTERN.search(path))


def is_image_path(path: str) -> bool:
    """True если путь заканчивается расширением изображения (допускается ?query)"""
    return bool(_IMAGE_PATTERN.search(path))


def preview_segment(path: str, prefix: str) -> Optional[str]:
    """
    Извлекает сегмент сразу после префикса превью

    Args:
        path: URL path (например, /post/42)
        prefix: /post/ или /profile/

    Returns:
        str или None: id/username без хвостового ?query, None если сегмент пустой
    """
    if not path.startswith(prefix):
        return None
    segment = path[len(prefix):].split('/')[0].split('?')[0]
    return segment or None


def _is_document(path: str, headers: Optional[Mapping[str, str]]) -> bool:
    if path.lower().endswith('.html'):
        return True
    if not headers:
        return False
    if headers.get('Sec-Fetch-Dest', '').lower() == 'document':
        return True
    return 'text/html' in headers.get('Accept', '').lower()


def classify(url, method: str = 'GET', headers: Optional[Mapping[str, str]] = None,
             serving_host: Optional[str] = None, api_prefix: str = API_PREFIX) -> Classification:
    """
    Определяет категорию ресурса. Правила проверяются по порядку, первое совпадение выигрывает.

    Args:
        url: абсолютный URL запроса (str или yarl.URL)
        method: HTTP метод (на категорию не влияет)
        headers: заголовки запроса для content negotiation
        serving_host: хост, который обслуживает приложение
        api_prefix: префикс API-bypass прокси

    Returns:
        Classification: категория и извлечённый параметр (id/username)
    """
    url = URL(str(url))
    path = url.path

    if path == api_prefix or path.startswith(api_prefix.rstrip('/') + '/'):
        return Classification(Category.PROXY_API)

    post_id = preview_segment(path, POST_PREFIX)
    if post_id:
        return Classification(Category.PREVIEW_POST, post_id)

    username = preview_segment(path, PROFILE_PREFIX)
    if username:
        return Classification(Category.PREVIEW_PROFILE, username)

    if is_video_path(path):
        return Classification(Category.VIDEO)

    if is_image_path(path):
        return Classification(Category.IMAGE)

    if _is_document(path, headers):
        return Classification(Category.DOCUMENT)

    if serving_host and url.host and url.host.lower() != serving_host.split(':')[0].lower():
        return Classification(Category.EXTERNAL)

    return Classification(Category.STATIC_ASSET)
