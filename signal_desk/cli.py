from __future__ import annotations

import argparse
import logging
import sys
from typing import Dict, List, Optional

import uvicorn  # type: ignore[import-not-found]

from .collaborators import LoggingNarrator, StatusNarrator
from .config import DEFAULT_HOST, DEFAULT_PORT, IngressConfig, load_env_config
from .models import DeskSettings
from .paper import PaperOrderManager
from .pipeline import PerSymbolDecisionPipeline


class ExtraFormatter(logging.Formatter):
    """Appends ``extra={...}`` fields to the log line as ``key=value`` pairs."""

    _reserved = set(
        logging.LogRecord("", 0, "", 0, "", None, None).__dict__
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._reserved and not key.startswith("_")
        }
        if extras:
            extra_str = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
            return f"{base} | {extra_str}"
        return base


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(ExtraFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logging.basicConfig(level=numeric_level, handlers=[handler])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the signal decision desk behind an HTTP/WebSocket ingress.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", default=DEFAULT_HOST, help="Bind address.")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on.")
    parser.add_argument("--log-level", default="info", help="Logging level.")

    # Decision settings
    parser.add_argument("--smart-mode", action="store_true", help="Enable Smart Mode early exits.")
    parser.add_argument(
        "--smart-mode-min-pnl",
        default=None,
        help="PnL floor below which Smart Mode is skipped (default: -50).",
    )
    parser.add_argument(
        "--trust-low-confidence",
        action="store_true",
        help="Allow LOW confidence signals to open positions.",
    )
    parser.add_argument("--auto-mode", action="store_true", help="Keep the auto-mode portfolio in sync.")
    parser.add_argument("--entry-grace", type=float, default=None, help="Entry grace window in seconds.")
    parser.add_argument("--reversal-grace", type=float, default=None, help="Reversal grace window in seconds.")
    parser.add_argument(
        "--pnl-poll-interval",
        type=float,
        default=None,
        help="Seconds between aggregate PnL polls, 0 disables polling (default: 2).",
    )

    # Telegram configuration
    parser.add_argument("--telegram-token", help="Telegram bot token (see BotFather).")
    parser.add_argument("--telegram-chat-id", help="Target chat or channel ID.")
    parser.add_argument("--telegram-proxy", help="Proxy URL for Telegram requests (optional).")
    parser.add_argument("--telegram-timeout", type=float, default=10.0, help="Telegram request timeout in seconds.")
    return parser


def apply_env_defaults(args: argparse.Namespace, config: Dict[str, str]) -> argparse.Namespace:
    """Fill in values the command line left unset from the environment."""
    if config["host"] and args.host == DEFAULT_HOST:
        args.host = config["host"]
    if config["port"] and args.port == DEFAULT_PORT:
        args.port = int(config["port"])
    if config["smart_mode"] and not args.smart_mode:
        args.smart_mode = config["smart_mode"]
    if config["smart_mode_min_pnl"] and args.smart_mode_min_pnl is None:
        args.smart_mode_min_pnl = config["smart_mode_min_pnl"]
    if config["trust_low_confidence"] and not args.trust_low_confidence:
        args.trust_low_confidence = config["trust_low_confidence"]
    if config["auto_mode"] and not args.auto_mode:
        args.auto_mode = config["auto_mode"]
    if config["entry_grace_seconds"] and args.entry_grace is None:
        args.entry_grace = float(config["entry_grace_seconds"])
    if config["reversal_grace_seconds"] and args.reversal_grace is None:
        args.reversal_grace = float(config["reversal_grace_seconds"])
    if config["pnl_poll_interval_seconds"] and args.pnl_poll_interval is None:
        args.pnl_poll_interval = float(config["pnl_poll_interval_seconds"])
    if config["telegram_token"] and not args.telegram_token:
        args.telegram_token = config["telegram_token"]
    if config["telegram_chat_id"] and not args.telegram_chat_id:
        args.telegram_chat_id = config["telegram_chat_id"]
    if config["telegram_proxy"] and not args.telegram_proxy:
        args.telegram_proxy = config["telegram_proxy"]
    return args


def build_settings(args: argparse.Namespace, config: Dict[str, str]) -> DeskSettings:
    return DeskSettings.from_mapping(
        {
            "smart_mode": args.smart_mode,
            "smart_mode_min_pnl": args.smart_mode_min_pnl,
            "trust_low_confidence": args.trust_low_confidence,
            "auto_mode": args.auto_mode,
            "entry_grace_seconds": args.entry_grace,
            "reversal_grace_seconds": args.reversal_grace,
            "max_pending_per_symbol": config.get("max_pending_per_symbol"),
            "pnl_poll_interval_seconds": args.pnl_poll_interval,
        }
    )


def build_narrator(args: argparse.Namespace, logger: logging.Logger) -> StatusNarrator:
    if not args.telegram_token or not args.telegram_chat_id:
        logger.info("Telegram not configured, narrating to the log")
        return LoggingNarrator(logging.getLogger("signal_desk.narrative"))

    from signal_notifier import TelegramClient, TelegramConfig, TelegramNarrator

    telegram_logger = logging.getLogger("signal_desk.telegram")
    config = TelegramConfig(
        bot_token=args.telegram_token,
        chat_id=args.telegram_chat_id,
        proxy=args.telegram_proxy,
        timeout=args.telegram_timeout,
    )
    return TelegramNarrator(TelegramClient(config, logger=telegram_logger), logger=telegram_logger)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    env_config = load_env_config()
    args = apply_env_defaults(args, env_config)
    configure_logging(args.log_level)
    logger = logging.getLogger("signal_desk")

    try:
        settings = build_settings(args, env_config)
        ingress = IngressConfig(host=args.host, port=args.port, log_level=args.log_level)
        narrator = build_narrator(args, logger)
    except ValueError as exc:
        parser.error(str(exc))

    logger.info(
        "Starting signal desk",
        extra={
            "smart_mode": settings.smart_mode,
            "smart_mode_min_pnl": settings.smart_mode_min_pnl,
            "trust_low_confidence": settings.trust_low_confidence,
            "auto_mode": settings.auto_mode,
            "pnl_poll_interval": settings.pnl_poll_interval_seconds,
        },
    )

    from webserver.app import create_app

    pipeline = PerSymbolDecisionPipeline(
        PaperOrderManager(), settings, narrator=narrator, logger=logger
    )
    config = uvicorn.Config(
        create_app(pipeline),
        host=ingress.host,
        port=ingress.port,
        log_level=ingress.log_level,
        log_config=None,
    )
    server = uvicorn.Server(config)
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Signal desk interrupted by user.")
    finally:
        close = getattr(narrator, "close", None)
        if close is not None:
            close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
