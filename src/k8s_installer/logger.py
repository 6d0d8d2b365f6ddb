"""
로깅 시스템
콘솔(Rich) 및 파일 로깅, SUCCESS 레벨 지원
"""

import logging
import os
from typing import Optional
from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")
logging.addLevelName(logging.WARNING, "WARN")

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "SUCCESS": SUCCESS,
    "ERROR": logging.ERROR,
}

DEFAULT_LOG_FILE = "/var/log/k8s-installer/k8s-installer.log"

console = Console(theme=Theme({
    "logging.level.debug": "dim cyan",
    "logging.level.info": "blue",
    "logging.level.warn": "yellow",
    "logging.level.success": "bold green",
    "logging.level.error": "bold red",
}))


class LevelFilter(logging.Filter):
    """최소 레벨 필터 (SUCCESS 는 항상 통과)"""

    def __init__(self, min_level: int):
        super().__init__()
        self.min_level = min_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno == SUCCESS or record.levelno >= self.min_level


class SafeFileHandler(logging.FileHandler):
    """쓰기 실패 시 한 번만 알리고 이후 기록을 건너뛰는 파일 핸들러"""

    def __init__(self, filename: str, on_error):
        super().__init__(filename, encoding="utf-8")
        self.on_error = on_error
        self.failed = False

    def emit(self, record):
        if self.failed:
            return
        super().emit(record)

    def handleError(self, record):
        if self.failed:
            return
        self.failed = True
        self.on_error(self.baseFilename)


class InstallerLogger:
    """설치 도구 로거"""

    def __init__(self, log_file: Optional[str] = None, log_level: str = "INFO", debug: bool = False):
        self.log_file = log_file
        self.debug_mode = debug
        self.min_level = logging.DEBUG if debug else resolve_level(log_level)

        self.logger = logging.getLogger("k8s_installer")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        # 기존 핸들러 제거
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        level_filter = LevelFilter(self.min_level)

        # 콘솔 핸들러 (Rich)
        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=debug,
            markup=False,
            log_time_format="[%Y-%m-%d %H:%M:%S]",
        )
        rich_handler.addFilter(level_filter)
        self.logger.addHandler(rich_handler)

        # 파일 핸들러 (색상 없음)
        if log_file:
            try:
                directory = os.path.dirname(log_file)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                file_handler = SafeFileHandler(log_file, self._file_failed)
            except OSError as e:
                self.log_file = None
                self._notify(f"Cannot open log file {log_file}: {e}; logging to console only")
            else:
                file_handler.setFormatter(logging.Formatter(
                    "[%(levelname)s] %(asctime)s - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                ))
                file_handler.addFilter(level_filter)
                self.logger.addHandler(file_handler)

    def _file_failed(self, filename: str):
        self.log_file = None
        self._notify(f"Cannot write log file {filename}; logging to console only")

    def _notify(self, message: str):
        # 레벨 필터와 무관하게 콘솔에 출력
        console.print(message, style="yellow", markup=False, highlight=False, soft_wrap=True)

    def log(self, level: str, message: str):
        """레벨 이름으로 로그 기록"""
        self.logger.log(resolve_level(level), message)

    def debug(self, message: str):
        self.logger.debug(message)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    warn = warning

    def success(self, message: str):
        self.logger.log(SUCCESS, message)

    def error(self, message: str):
        self.logger.error(message)

    def exception(self, message: str):
        """예외 로그 (트레이스백 포함)"""
        self.logger.exception(message)

    def close(self):
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()


def resolve_level(level: str) -> int:
    try:
        return LEVELS[level.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}") from None


# 글로벌 로거 인스턴스
_logger: Optional[InstallerLogger] = None


def get_logger() -> InstallerLogger:
    """로거 인스턴스 가져오기"""
    global _logger
    if _logger is None:
        _logger = InstallerLogger()
    return _logger


def init_logger(log_file: Optional[str] = None, log_level: str = "INFO", debug: bool = False) -> InstallerLogger:
    """로거 초기화"""
    global _logger
    if _logger is not None:
        _logger.close()
    _logger = InstallerLogger(log_file, log_level, debug)
    return _logger
