"""Main entry point for the host metrics exporter."""
import argparse
import logging
import sys

from hostmetrics.config import load_config
from hostmetrics.errors import (
    ConfigError, ListenerStartError, RegistrationError, ShutdownDrainError
)
from hostmetrics.lifecycle import LifecycleCoordinator


def setup_logging(log_level: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Reduce noise from some libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hostmetrics",
        description="System Metrics Exporter - expose host CPU, memory and disk metrics"
    )
    parser.add_argument("--config", "-c", help="Path to configuration YAML file")
    parser.add_argument("--port", type=int, help="Port to serve metrics on (default 8080)")
    parser.add_argument("--bind-address", help="Address to listen on (default 0.0.0.0)")
    parser.add_argument("--metrics-path", help="Path to expose metrics on (default /metrics)")
    parser.add_argument(
        "--scrape-interval",
        help="Interval between metric collections, e.g. 5s or 500ms (default 5s)"
    )
    parser.add_argument(
        "--shutdown-grace-period",
        help="Time allowed for in-flight requests at shutdown (default 5s)"
    )
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument(
        "--no-self-metrics",
        dest="self_metrics",
        action="store_false",
        default=None,
        help="Do not expose exporter self-monitoring metrics"
    )
    parser.add_argument(
        "--no-process-metrics",
        dest="process_metrics",
        action="store_false",
        default=None,
        help="Do not expose exporter process metrics"
    )
    return parser


def main(argv=None) -> int:
    """Main function. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    overrides = {
        "server.port": args.port,
        "server.bind_address": args.bind_address,
        "server.metrics_path": args.metrics_path,
        "server.shutdown_grace_period": args.shutdown_grace_period,
        "sampler.scrape_interval": args.scrape_interval,
        "sampler.self_metrics": args.self_metrics,
        "sampler.process_metrics": args.process_metrics,
        "global.log_level": args.log_level,
    }

    # Load configuration
    try:
        config = load_config(args.config, overrides)
    except (ConfigError, FileNotFoundError) as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    # Setup logging
    setup_logging(config.global_.log_level)
    logger = logging.getLogger(__name__)

    logger.info("System Metrics Exporter")
    logger.info(f"Scrape interval: {config.sampler.scrape_interval}s")
    logger.info(f"Metrics path: {config.server.metrics_path}")
    logger.info(f"Shutdown grace period: {config.server.shutdown_grace_period}s")

    try:
        coordinator = LifecycleCoordinator(config)
    except RegistrationError as e:
        logger.error(f"Failed to register metrics: {e}")
        return 1

    try:
        coordinator.run()
    except ListenerStartError as e:
        logger.error(f"Failed to start metrics server: {e}")
        return 1
    except ShutdownDrainError as e:
        logger.error(f"Failed to shut down cleanly: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
