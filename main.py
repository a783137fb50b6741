# main.py
import sys
import logging
import signal
import threading


def setup_logging():
    """Настраивает логирование ДО всех операций с ротацией"""
    from edgeroute.core.config_manager import get_app_data_dir
    from logging.handlers import RotatingFileHandler

    logs_dir = get_app_data_dir() / "logs"
    logs_dir.mkdir(exist_ok=True)

    log_file = logs_dir / "edgeroute.log"

    # Ротирующий обработчик: макс 5MB, 5 резервных копий
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    logging.basicConfig(
        level=logging.INFO,
        handlers=[console_handler, file_handler]
    )


# НАСТРАИВАЕМ ЛОГИРОВАНИЕ САМЫМ ПЕРВЫМ ДЕЛОМ
setup_logging()
logger = logging.getLogger(__name__)


def setup_exception_handler():
    """Настраивает глобальный обработчик исключений"""

    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Необработанное исключение:",
                        exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = exception_handler


def main():
    """Запускает edge-сервер и ждёт сигнала остановки"""
    setup_exception_handler()

    from edgeroute.core.edge_manager import get_edge_manager

    edge_manager = get_edge_manager()
    logger.info("🚀 Запуск EdgeRoute")

    if not edge_manager.start():
        status = edge_manager.get_status()
        logger.error(f"❌ Edge не запущен: {status.get('error')}")
        return 1

    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())

    try:
        while not stop_event.wait(1):
            pass
    except KeyboardInterrupt:
        logger.info("⌨️ Получен Ctrl+C")
    finally:
        logger.info("🛑 Завершение работы")
        edge_manager.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
