"""OracleFeeder: Main orchestrator for exchange rate voting.

This module wires every configured network to the shared price pipeline and
runs them side by side.

Architecture:
    - One shared QuoteCollector and PriceAggregator for all networks
    - Per network: ChainClient, Signer, SubmissionClient, VoteStateMachine
      and NetworkCoordinator
    - One asyncio task per network plus the status listener
    - A failing network never stops the others
"""

from __future__ import annotations

import asyncio
import logging

from .ChainClient import ChainClient
from .FeederConfig import ConfigError, FeederConfig, NetworkConfig
from .fetchers import BaseFetcher, SourceConfigError, get_available_fetchers, get_fetcher
from .NetworkCoordinator import NetworkCoordinator
from .PriceAggregator import PriceAggregator
from .QuoteCollector import QuoteCollector
from .signer import DryRunSigner, HttpSigner, Signer
from .StatusListener import serve
from .SubmissionClient import SubmissionClient
from .VoteMessages import validate_address
from .VoteStateMachine import NetworkState, VoteStateMachine

logger = logging.getLogger(__name__)


class OracleFeeder:
    """Builds and runs the coordinators of every configured network.

    :ivar config: Feeder configuration.
    :ivar fetchers: Source name to fetcher instance.
    :ivar collector: Shared quote collector.
    :ivar aggregator: Shared price aggregator.
    :ivar coordinators: Network id to coordinator.
    """

    def __init__(self, config: FeederConfig) -> None:
        """Initialize the feeder.

        :param config: Validated configuration.
        :raises ConfigError: If a source is unknown or misconfigured, or an
            address does not match its prefix.
        """
        self.config = config

        # Validate sources against registered fetchers
        available = get_available_fetchers()
        sources = config.sources()
        invalid = [s for s in sources if s not in available]
        if invalid:
            raise ConfigError(f"Unknown sources: {invalid}. Available: {available}")

        # Create fetcher instances
        self.fetchers: dict[str, BaseFetcher] = {}
        for source in sources:
            try:
                self.fetchers[source] = get_fetcher(
                    source,
                    api_key=config.api_keys.get(source),
                    timeout=config.aggregation.fetch_timeout,
                )
            except SourceConfigError as e:
                raise ConfigError(str(e)) from e

        self.collector = QuoteCollector(
            fetchers=self.fetchers,
            fetch_timeout=config.aggregation.fetch_timeout,
        )
        self.aggregator = PriceAggregator(
            max_deviation_percent=config.aggregation.max_deviation_percent,
            max_quote_age=config.aggregation.max_quote_age,
            statistic=config.aggregation.statistic,
            min_sources=config.aggregation.min_sources,
        )

        self.signers: dict[str, Signer] = {}
        self.chains: dict[str, ChainClient] = {}
        self.coordinators: dict[str, NetworkCoordinator] = {
            network.id: self._create_coordinator(network) for network in config.networks
        }

        logger.info(
            f"OracleFeeder initialized: networks={list(self.coordinators)}, "
            f"sources={sources}"
        )

    @property
    def states(self) -> dict[str, NetworkState]:
        return {nid: c.state for nid, c in self.coordinators.items()}

    def _create_signer(self, network: NetworkConfig) -> Signer:
        if network.signer_url:
            return HttpSigner(network.signer_url, timeout=network.broadcast_timeout)
        logger.warning(f"[{network.id}] No signer_url configured; dry run only")
        return DryRunSigner()

    def _create_coordinator(self, network: NetworkConfig) -> NetworkCoordinator:
        """Create the coordinator and its collaborators for one network.

        :raises ConfigError: If the feeder or validator address is invalid.
        """
        try:
            validate_address(network.feeder, network.account_prefix)
            validate_address(network.validator, network.validator_prefix)
        except ValueError as e:
            raise ConfigError(f"[networks.{network.id}] {e}") from e

        chain = ChainClient(network.rpc_url, network.lcd_url, timeout=network.query_timeout)
        signer = self._create_signer(network)
        self.chains[network.id] = chain
        self.signers[network.id] = signer

        submission = SubmissionClient(
            signer=signer,
            chain=chain,
            network_id=network.id,
            account=network.feeder,
            max_attempts=network.max_attempts,
            backoff_base=network.backoff_base,
            backoff_max=network.backoff_max,
            broadcast_timeout=network.broadcast_timeout,
        )
        state_machine = VoteStateMachine(
            submission=submission,
            feeder=network.feeder,
            validator=network.validator,
            period_length=network.vote_period,
            chain_id=network.chain_id,
            fee=network.fee,
            memo=network.memo,
            max_rate_age=network.max_rate_age,
        )
        return NetworkCoordinator(
            network=network,
            collector=self.collector,
            aggregator=self.aggregator,
            chain=chain,
            state_machine=state_machine,
        )

    async def aclose(self) -> None:
        """Close every HTTP client."""
        for chain in self.chains.values():
            await chain.aclose()
        for signer in self.signers.values():
            await signer.aclose()
        await BaseFetcher.close_shared_client()

    async def run(self) -> None:
        """Run every network coordinator and the status listener."""
        BaseFetcher.configure_shared_client(proxy=self.config.proxy)

        tasks = [
            asyncio.create_task(coordinator.run(), name=f"network-{nid}")
            for nid, coordinator in self.coordinators.items()
        ]
        if self.config.listen_enabled:
            tasks.append(
                asyncio.create_task(
                    serve(self.states, self.config.listen_addr, self.config.listen_port),
                    name="status-listener",
                )
            )

        logger.info(f"Started {len(self.coordinators)} network coordinators")

        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            # Clean up shared HTTP clients
            await self.aclose()
