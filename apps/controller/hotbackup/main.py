"""Run the HotBackup controller.

Watches HotBackup resources and triggers Hazelcast hot backups, directly or
on a cron schedule. Configuration comes from a YAML file mounted at
/config/config.yaml (override with -c or HOTBACKUP_CONFIG)::

    namespace: hazelcast      # empty watches all namespaces
    workers: 2
    logLevel: INFO
    agentPort: 8080
    clusterRestPort: 5701
    pollInterval: 5
    schedulerTimezone: UTC
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from dataclasses import replace
from functools import partial

import requests
from kubernetes.config.config_exception import ConfigException

from common.kube import init_custom_api

from .backup import new_cluster_backup
from .config import ControllerConfig, load_config
from .controller import setup_with_manager
from .errors import ConfigError
from .reconciler import HotBackupReconciler
from .resources import ResourceStore
from .scheduler import RecurrenceScheduler
from .status import StatusStore
from .upload import Upload

logger = logging.getLogger("hotbackup")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Hazelcast HotBackup controller")
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("-n", "--namespace", help="Namespace to watch (overrides config)")
    parser.add_argument("--log-level", help="Log level (overrides config)")
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(levelname)s] %(threadName)s %(message)s",
        stream=sys.stdout,
    )


def build_reconciler(store: ResourceStore, http: requests.Session, config: ControllerConfig) -> HotBackupReconciler:
    session_factory = partial(
        new_cluster_backup,
        http=http,
        agent_port=config.agent_port,
        rest_port=config.cluster_rest_port,
        poll_interval=config.poll_interval,
        timeout=config.http_timeout,
    )
    upload_factory = partial(
        Upload,
        http=http,
        agent_port=config.agent_port,
        poll_interval=config.poll_interval,
        timeout=config.http_timeout,
    )
    return HotBackupReconciler(
        store,
        session_factory,
        upload_factory,
        scheduler=RecurrenceScheduler(timezone=config.scheduler_timezone),
        status=StatusStore(store, retry=config.status_retry),
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 2
    if args.namespace:
        config = replace(config, namespace=args.namespace)
    if args.log_level:
        config = replace(config, log_level=args.log_level.upper())

    configure_logging(config.log_level)

    try:
        custom_api = init_custom_api()
    except ConfigException as exc:
        logger.error(f"❌ Failed to load kubeconfig: {exc}")
        return 3

    http = requests.Session()
    reconciler = build_reconciler(ResourceStore(custom_api), http, config)
    controller = setup_with_manager(reconciler, custom_api, config)

    stop_event = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info(f"🛑 Received {signal.Signals(signum).name}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    scope = config.namespace or "all namespaces"
    logger.info(f"🔄 Watching HotBackup resources in {scope}")
    try:
        controller.run_until(stop_event)
    finally:
        reconciler.shutdown(wait=True)
        http.close()
    logger.info("✅ Controller exited cleanly")
    return 0


if __name__ == "__main__":
    sys.exit(main())
