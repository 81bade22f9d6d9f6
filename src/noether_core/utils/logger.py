# src/noether_core/utils/logger.py
# 〔このモジュールがすること〕
# keeper プロセス全体のログ出力をルートロガーに一度だけ組み立てます。
# - コンソール: レベル名だけ色付け（✅ / ⚠️ / ❌ の結果アイコンはメッセージ側に付ける）
# - logs/<bot>/<bot>.csv: 日次ローテーション（UTC、7 世代）
# - logs/<bot>/error.csv: WARNING 以上だけ
# - Discord: ERROR 以上を webhook に転送（任意、別スレッドで送信）
from __future__ import annotations

import csv
import io
import logging
import logging.handlers
import os
import queue
import threading
import time
from pathlib import Path
from typing import Final, Optional

import httpx
from colorama import Fore, Style, init as _color_init

_LOG_FMT: Final = "%(asctime)s %(levelname)s %(name)s | %(message)s"
_DATE_FMT: Final = "%Y-%m-%d %H:%M:%S"
_CSV_COLUMNS: Final = ("asctime", "levelname", "name", "message")
_LEVEL_COLOR: Final = {
    logging.DEBUG: Fore.CYAN,
    logging.INFO: Fore.GREEN,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.MAGENTA,
}

# stellar_sdk / httpx は INFO 以下だとリクエスト毎に出力するため抑える
_NOISY_NETWORK_LOGGERS: Final = (
    "httpx",
    "httpcore",
    "urllib3",
    "stellar_sdk",
    "asyncio",
)

_LOGGER_CONFIGURED = False


class _ConsoleFormatter(logging.Formatter):
    """レベル名に色を付けるコンソール用フォーマッタ（レコード本体は書き換えない）。"""

    def formatMessage(self, record: logging.LogRecord) -> str:  # noqa: N802
        text = super().formatMessage(record)
        color = _LEVEL_COLOR.get(record.levelno)
        if not color:
            return text
        return text.replace(record.levelname, f"{color}{record.levelname}{Style.RESET_ALL}", 1)


class _CsvFormatter(logging.Formatter):
    """1 レコード = 1 CSV 行。例外があれば行の後ろにトレースバックを続けます。"""

    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        values = {
            "asctime": self.formatTime(record, _DATE_FMT),
            "levelname": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        buf = io.StringIO()
        csv.writer(buf).writerow([values[c] for c in _CSV_COLUMNS])
        line = buf.getvalue().rstrip("\r\n")
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class DiscordHandler(logging.Handler):
    """ERROR 以上を Discord webhook へ送るハンドラ（送信はデーモンスレッドで直列に行う）。"""

    def __init__(self, webhook_url: str, level: int = logging.ERROR, timeout: float = 5.0) -> None:
        super().__init__(level)
        self.webhook_url = webhook_url
        self._timeout = timeout
        self._pending: "queue.Queue[str]" = queue.Queue()
        threading.Thread(target=self._drain, name="discord-log", daemon=True).start()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._pending.put_nowait(self.format(record))
        except Exception:  # pragma: no cover
            self.handleError(record)

    def _drain(self) -> None:
        with httpx.Client(timeout=self._timeout) as client:
            while True:
                content = self._pending.get()
                try:
                    client.post(self.webhook_url, json={"content": content[:2000]})
                except httpx.HTTPError:
                    # 通知の失敗で keeper を止めない
                    continue


def _coerce_level(value: str | int | None, *, default: int) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, int):
        return value
    text = value.strip().upper()
    if text.isdecimal():
        return int(text)
    level = logging.getLevelName(text)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value!r}")
    return level


def setup_logger(
    bot_name: Optional[str] = None,
    *,
    console_level: str | int | None = None,
    file_level: str | int | None = None,
    log_root: Path | str = "logs",
    discord_webhook: str | None = None,
) -> None:
    """
    ルートロガーを初期化します（2 回目以降はレベルの再適用だけ）。

    ```python
    setup_logger("keeper", discord_webhook=settings.discord_webhook)
    get_logger("keeper.orders").info("✅ Order #3 executed")
    ```

    ``console_level`` / ``file_level`` を省略すると ``LOG_LEVEL``（未設定なら INFO）に従います。
    """
    global _LOGGER_CONFIGURED

    env_level = _coerce_level(os.getenv("LOG_LEVEL"), default=logging.INFO)
    console = _coerce_level(console_level, default=env_level)
    file_ = _coerce_level(file_level, default=env_level)
    root = logging.getLogger()

    if not _LOGGER_CONFIGURED:
        folder = Path(log_root).resolve() / (bot_name or "keeper")
        folder.mkdir(parents=True, exist_ok=True)
        _color_init(strip=False)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(_ConsoleFormatter(_LOG_FMT, _DATE_FMT))
        root.addHandler(console_handler)

        rotating = logging.handlers.TimedRotatingFileHandler(
            folder / f"{folder.name}.csv",
            when="midnight",
            backupCount=7,
            encoding="utf-8",
            utc=True,
        )
        rotating.setFormatter(_CsvFormatter())
        root.addHandler(rotating)

        errors = logging.FileHandler(folder / "error.csv", encoding="utf-8")
        errors.setLevel(logging.WARNING)
        errors.setFormatter(_CsvFormatter())
        root.addHandler(errors)

        if discord_webhook:
            discord = DiscordHandler(discord_webhook)
            discord.setFormatter(logging.Formatter("%(levelname)s %(name)s | %(message)s"))
            root.addHandler(discord)
        _LOGGER_CONFIGURED = True

    root.setLevel(min(console, file_))
    for handler in root.handlers:
        if isinstance(handler, logging.handlers.TimedRotatingFileHandler):
            handler.setLevel(file_)
        elif type(handler) is logging.StreamHandler:
            handler.setLevel(console)
    quiet = max(logging.WARNING, root.level)
    for name in _NOISY_NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module logger; handlers live on the root (see ``setup_logger``)."""
    return logging.getLogger(name)


__all__ = ["DiscordHandler", "get_logger", "setup_logger"]
