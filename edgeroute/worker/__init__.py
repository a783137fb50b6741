# worker/__init__.py
"""
Клиентская часть: перехват fetch, версионированный кэш и цепочки fallback.
"""
