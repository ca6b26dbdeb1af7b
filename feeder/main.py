#!/usr/bin/env python3
"""Oracle Feeder.

Fetches exchange rates from multiple sources, aggregates them per denom and
votes them into the chain's oracle module with commit-reveal prevotes and
votes.

Start with a TOML config file. See config.example.toml for the format.
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace

from .src import __version__
from .src.FeederConfig import ConfigError, FeederConfig, parse_api_keys
from .src.OracleFeeder import OracleFeeder
from .src.fetchers import get_available_fetchers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    available_sources = get_available_fetchers()

    parser = argparse.ArgumentParser(
        description="Oracle Feeder: commit-reveal exchange rate voting",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # Run with a config file
  python -m feeder.main --config feeder.toml

  # Override the listener port and pass API keys
  python -m feeder.main --config feeder.toml --listen-port 3900 \\
      --api-keys alphavantage=your-api-key

Environment variables (CLI args take precedence, file values come last):
  FEEDER_CONFIG, FETCH_TIMEOUT, MAX_DEVIATION_PERCENT, LISTEN_PORT,
  API_KEYS, API_KEY_ALPHAVANTAGE, API_KEY_CURRENCYLAYER, etc.
""",
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        help="Path to the TOML configuration file",
        default=os.environ.get("FEEDER_CONFIG"),
    )

    parser.add_argument(
        "--max-deviation",
        dest="max_deviation",
        type=float,
        help="Max price deviation percent before excluding outlier (default: 5.0)",
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual fetch requests in seconds (default: 5.0)",
    )

    parser.add_argument(
        "--listen-port",
        dest="listen_port",
        type=int,
        help="Status listener port (default: 3822)",
    )

    parser.add_argument(
        "--no-listen",
        dest="no_listen",
        action="store_true",
        help="Do not start the status listener",
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., alphavantage=abc,currencylayer=xyz)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"oracle-feeder {__version__}",
    )

    return parser


def load_config(args: argparse.Namespace) -> FeederConfig:
    """Load the file, then apply environment and CLI overrides.

    :raises ConfigError: If the configuration is invalid.
    """
    if not args.config:
        raise ConfigError("No config file given (use --config or FEEDER_CONFIG)")

    config = FeederConfig.load(args.config).with_env()

    aggregation = config.aggregation
    if args.max_deviation is not None:
        aggregation = replace(aggregation, max_deviation_percent=args.max_deviation)
    if args.fetch_timeout is not None:
        aggregation = replace(aggregation, fetch_timeout=args.fetch_timeout)

    api_keys = dict(config.api_keys)
    api_keys.update(parse_api_keys(args.api_keys))

    config = replace(
        config,
        aggregation=aggregation,
        api_keys=api_keys,
        listen_port=args.listen_port if args.listen_port is not None else config.listen_port,
        listen_enabled=config.listen_enabled and not args.no_listen,
    )
    config.validate()
    return config


def log_config(config: FeederConfig) -> None:
    logger.info("=" * 60)
    logger.info(f"Oracle Feeder {__version__}")
    logger.info("=" * 60)
    for network in config.networks:
        logger.info(f"Network:           {network.id} ({network.chain_id})")
        logger.info(f"  Feeder:          {network.feeder}")
        logger.info(f"  Validator:       {network.validator}")
        logger.info(f"  Vote Period:     {network.vote_period} blocks")
        logger.info(f"  Signer:          {network.signer_url or 'dry run'}")
        for denom in network.denoms:
            for _, pair, sources in denom.legs():
                logger.info(f"  {denom.denom + ':':<16} {pair} from {', '.join(sources)}")
    agg = config.aggregation
    logger.info(f"Statistic:         {agg.statistic}")
    logger.info(f"Min Sources:       {agg.min_sources}")
    logger.info(f"Max Deviation:     {agg.max_deviation_percent}%")
    logger.info(f"Max Quote Age:     {agg.max_quote_age}s")
    logger.info(f"Fetch Timeout:     {agg.fetch_timeout}s")
    if config.listen_enabled:
        logger.info(f"Listen:            {config.listen_addr}:{config.listen_port}")
    else:
        logger.info("Listen:            disabled")
    if config.proxy:
        logger.info(f"Proxy:             {config.proxy}")
    if config.api_keys:
        logger.info(f"API Keys:          {', '.join(sorted(config.api_keys))}")
    logger.info("=" * 60)


def main() -> None:
    """Main entry point for the Oracle Feeder CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args)
        log_config(config)
        feeder = OracleFeeder(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        asyncio.run(feeder.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
