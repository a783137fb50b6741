"""Edge dispatcher и клиентский оркестратор кэша."""

__version__ = '1.0.0'
