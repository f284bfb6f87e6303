"""Application entry point for the mailpulse monitor."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
import time
from logging.handlers import RotatingFileHandler
from typing import Callable, Iterable, Optional

from art import tprint

import settings
from adapters.file_state import FileStateMedium
from adapters.http_publisher import HomenetPublisher
from adapters.imap_mailbox import ImapMailbox
from adapters.mqtt_publisher import MqttPublisher
from adapters.publishers import FanOutPublisher, NullPublisher
from core.errors import ConfigurationError
from core.monitor import MonitorCycle
from core.ports import PublisherPort
from core.state_store import StateStore

NAME = "MAILPULSE"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _SecretMaskingFormatter(logging.Formatter):
    """Formatter that replaces mailbox and broker credentials with a mask."""

    MASK = "[redacted]"

    def __init__(self, secrets: Iterable[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        # Longest first, so a secret containing another one is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, self.MASK)
        return message


def _secrets_to_mask(config: settings.Settings) -> list[str]:
    """Configured passwords plus the values of the env vars under `redact.patterns`."""

    redact_cfg = config.logging.get("redact", {})
    if not redact_cfg.get("enabled", False):
        return []

    secrets = [os.getenv(name, "") for name in redact_cfg.get("patterns", [])]
    secrets.extend(account.password for account in config.accounts)
    for target in (config.mqtt, config.homenet):
        if target is not None:
            secrets.append(target.password)
    return [secret for secret in secrets if secret]


def _configure_logging(config: settings.Settings, verbose: bool = False) -> None:
    log_config = config.logging
    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    if not log_config.get("enabled", True):
        logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=fmt, datefmt=datefmt)
        return

    level_name = str(log_config.get("level", "INFO")).upper()
    level = logging.DEBUG if verbose else getattr(logging, level_name, logging.INFO)

    formatter = _SecretMaskingFormatter(_secrets_to_mask(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if log_config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = log_config.get("file", {})
    if file_cfg.get("enabled", False):
        path = settings.resolve_path(file_cfg.get("path", "logs/mailpulse.log"))
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers, force=True)


def build_publisher(config: settings.Settings) -> PublisherPort:
    """Select publish targets from configuration.

    The core cycle only sees one PublisherPort; several targets are combined
    with a fan-out publisher.
    """

    targets: list[tuple[str, PublisherPort]] = []
    if config.mqtt is not None:
        targets.append(
            (
                "mqtt",
                MqttPublisher(
                    host=config.mqtt.host,
                    port=config.mqtt.port,
                    username=config.mqtt.username,
                    password=config.mqtt.password,
                    tls=config.mqtt.tls,
                    qos=config.mqtt.qos,
                    retain=config.mqtt.retain,
                    timeout=config.mqtt.timeout_seconds,
                    client_id=config.mqtt.client_id,
                ),
            )
        )
    if config.homenet is not None:
        targets.append(
            (
                "homenet",
                HomenetPublisher(
                    url=config.homenet.url,
                    username=config.homenet.username,
                    password=config.homenet.password,
                    timeout=config.homenet.timeout_seconds,
                ),
            )
        )

    if not targets:
        LOGGER.warning("Neither mqtt nor homenet is configured; results are only logged")
        return NullPublisher()
    if len(targets) == 1:
        return targets[0][1]
    return FanOutPublisher(targets)


def _log_configuration(config: settings.Settings) -> None:
    LOGGER.debug("------------ Configuration ------------")
    LOGGER.debug("Loaded from file        : %s", config.config_path)
    LOGGER.debug("State file              : %s", config.state_file)
    LOGGER.debug("Check interval (minutes): %s", config.check_interval_minutes)
    LOGGER.debug("Accounts                : %s", ", ".join(a.name for a in config.accounts))
    LOGGER.debug("Ratings:")
    for line in config.ratings.describe():
        LOGGER.debug("    %s", line)


def build_monitor(config: settings.Settings) -> MonitorCycle:
    """Wire adapters into the core cycle and load the saved state."""

    store = StateStore(FileStateMedium(config.state_file))
    store.load_or_empty()
    return MonitorCycle(
        accounts=config.accounts,
        mailbox=ImapMailbox(),
        publisher=build_publisher(config),
        store=store,
        ratings=config.ratings,
        report_missing=config.report_missing,
    )


def run_forever(
    monitor: MonitorCycle,
    interval_minutes: int,
    sleep: Callable[[float], None] = time.sleep,
    max_cycles: Optional[int] = None,
) -> None:
    """Run the first cycle right away, then one cycle per interval.

    Cycles never overlap: the interval is measured from the end of one cycle
    to the start of the next.
    """

    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        try:
            monitor.run_cycle()
        except Exception:
            LOGGER.exception("Unexpected error during the monitoring cycle")
        cycles += 1
        if max_cycles is not None and cycles >= max_cycles:
            break
        sleep(interval_minutes * 60)


def _load(args: argparse.Namespace) -> settings.Settings:
    config = settings.load_settings(args.config)
    if args.state_file:
        config = dataclasses.replace(config, state_file=os.path.abspath(args.state_file))
    return config


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="mailpulse")
    parser.add_argument("-c", "--config", default=None, help="Configuration file (default: config.json)")
    parser.add_argument("-s", "--state-file", default=None, help="State file (overrides state_file)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Check all accounts periodically")
    subparsers.add_parser("once", help="Check all accounts once and exit")
    subparsers.add_parser("check-config", help="Validate the configuration and exit")

    args = parser.parse_args(argv)

    try:
        config = _load(args)
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.INFO)
        LOGGER.error("Invalid configuration: %s", exc)
        return 2

    _configure_logging(config, verbose=args.verbose)
    _log_configuration(config)

    if args.command == "check-config":
        LOGGER.info("Configuration OK: %s account(s)", len(config.accounts))
        return 0

    _print_banner()
    LOGGER.info("Starting mailpulse")
    monitor = build_monitor(config)

    if args.command == "once":
        report = monitor.run_cycle()
        return 0 if not report.skipped else 1

    try:
        run_forever(monitor, config.check_interval_minutes)
    except KeyboardInterrupt:
        LOGGER.info("Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
