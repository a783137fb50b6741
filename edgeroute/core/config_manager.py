import json
import sys
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import os

logger = logging.getLogger(__name__)

PUBLIC_URL = 'https://plusopinion.com'
API_PREFIX = '/api-bypass'
LANDING_PATH = '/home.html'


def get_app_data_dir() -> Path:
    """Возвращает путь для хранения данных приложения"""
    override = os.getenv('EDGEROUTE_HOME')
    if override:
        app_data_dir = Path(override)
    elif getattr(sys, 'frozen', False):
        # Собранный бинарник: рабочие файлы (конфиги, логи, кэш) в профиле пользователя
        if os.name == 'nt':  # Windows
            appdata_dir = Path(os.getenv('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
            app_data_dir = appdata_dir / 'EdgeRoute'
        else:  # Linux/Mac
            app_data_dir = Path.home() / '.config' / 'edgeroute'
    else:
        # Dev режим
        app_data_dir = Path(__file__).parent.parent.parent / 'app_data'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else self._get_config_path()
        self.config = self._load_config()

    def _get_config_path(self) -> Path:
        """Возвращает путь к файлу конфигурации"""
        return get_app_data_dir() / 'config.json'

    def _get_default_config(self) -> dict:
        """Возвращает конфигурацию по умолчанию"""
        return {
            'edge': {
                'host': '127.0.0.1',
                'port': 8787,
                'static_dir': 'public',
                'api_prefix': API_PREFIX,
                'landing_path': LANDING_PATH,
                'tls': False,
            },

            'origin': {
                'url': 'https://origin.example.co',
                'api_key': '',
                'timeout': 30,
            },

            'preview': {
                'site_name': 'PlusOpinion',
                'public_url': PUBLIC_URL,
                'fallback_image': f'{PUBLIC_URL}/seo-preview.jpg',
                'avatar_placeholder': f'{PUBLIC_URL}/icon-192.png',
                'image_cdn': 'https://wsrv.nl/',
                'max_age': 60,
                'post_app_path': LANDING_PATH,
                'profile_app_path': '/profile',
            },

            'worker': {
                'cache_prefix': 'plusopinion-pwa',
                'build_version': 'BUILD_20260301_V1',
                'prod_proxy_base': f'{PUBLIC_URL}{API_PREFIX}',
                'page_cache_size': 5,
                'page_cache_ttl': 300,
                'manifest': [
                    '/',
                    '/index.html',
                    '/onboarding.html',
                    LANDING_PATH,
                    '/bookmarks.html',
                    '/notifications.html',
                    '/reset-password.html',
                    '/change-password.html',
                    '/auth.js',
                    '/auth_guard.js',
                    '/supabase.js',
                    '/api.js',
                    '/router.js',
                    '/global.css',
                    '/icon-192.png',
                    '/icon-512.png',
                    '/manifest.json',
                ],
                'aliases': {
                    '/feed': LANDING_PATH,
                    '/onboarding': '/onboarding.html',
                    '/reset-password': '/reset-password.html',
                    '/change-password': '/change-password.html',
                    '/bookmarks': '/bookmarks.html',
                    '/notifications': '/notifications.html',
                    '/myprofile': '/private-profile.html',
                    '/profile': '/public-profile.html',
                    '/about': '/about.html',
                    '/support': '/support.html',
                    '/privacy-policy': '/privacy-policy.html',
                    '/maintenance': '/maintenance.html',
                },
            },
        }

    def _load_config(self) -> Dict[str, Any]:
        """Загружает конфигурацию из файла"""
        default_config = self._get_default_config()

        try:
            if self.config_path.exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded_config = json.load(f)
                    # Объединяем с дефолтными значениями
                    return self._deep_merge(default_config, loaded_config)
        except (OSError, ValueError) as e:
            logger.error(f"Ошибка загрузки конфига {self.config_path}: {e}")

        return default_config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Рекурсивное объединение словарей"""
        result = base.copy()

        for key, value in update.items():
            if (key in result and
                    isinstance(result[key], dict) and
                    isinstance(value, dict)):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save(self) -> bool:
        """Сохраняет конфигурацию в файл"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
            logger.info("Конфигурация сохранена")
            return True
        except OSError as e:
            logger.error(f"Ошибка сохранения конфига: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Получает значение по ключу (dot notation)"""
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = False) -> bool:
        """Устанавливает значение по ключу (dot notation)"""
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref or not isinstance(config_ref[k], dict):
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value

        if save:
            return self.save()
        return True


# Синглтон для глобального доступа
_config_instance = None


def get_config() -> ConfigManager:
    """Возвращает глобальный экземпляр ConfigManager"""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager()
    return _config_instance
