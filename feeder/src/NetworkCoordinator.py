"""NetworkCoordinator: Per-network driver loop.

Each tick refreshes the exchange rates of every configured denom, then
polls the chain height and hands every newly observed height to the vote
state machine in order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from .ChainClient import ChainClient, QueryError
from .PriceAggregator import AggregationResult, PriceAggregator
from .QuoteCollector import CollectionResult, QuoteCollector
from .VoteStateMachine import NetworkState, VoteStateMachine

if TYPE_CHECKING:
    from .FeederConfig import DenomConfig, NetworkConfig

logger = logging.getLogger(__name__)


class NetworkCoordinator:
    """Drives one network's rates, height tracking and voting.

    :ivar network: Network configuration.
    :ivar collector: Shared quote collector.
    :ivar aggregator: Shared price aggregator.
    :ivar chain: Chain client for this network.
    :ivar state_machine: Vote state machine for this network.
    :ivar poll_interval: Seconds between ticks.
    :ivar state: This network's state; only this coordinator mutates it.
    """

    def __init__(
        self,
        network: NetworkConfig,
        collector: QuoteCollector,
        aggregator: PriceAggregator,
        chain: ChainClient,
        state_machine: VoteStateMachine,
        poll_interval: float | None = None,
    ) -> None:
        self.network = network
        self.collector = collector
        self.aggregator = aggregator
        self.chain = chain
        self.state_machine = state_machine
        self.poll_interval = (
            network.poll_interval if poll_interval is None else poll_interval
        )
        self.state = NetworkState(network_id=network.id)

    @property
    def name(self) -> str:
        return self.network.id

    async def refresh_rates(self, now: float | None = None) -> None:
        """Collect and aggregate quotes for every configured denom.

        Successful aggregations replace the denom's rate; failed ones keep
        the previous rate, if any. A failure in one denom never affects the
        others.
        """
        now = time.time() if now is None else now
        collected = await self.collector.collect(self.network.pairs(), now=now)

        for denom_config in self.network.denoms:
            denom = denom_config.denom
            try:
                result = self._aggregate(denom_config, collected, now)
            except Exception:
                logger.exception(
                    f"[{self.name}] {denom}: aggregation raised; keeping previous rate"
                )
                continue

            if result.success:
                self.state.rates[denom] = result.rate
                log_msg = (
                    f"[{self.name}] {denom}: {result.rate.rate} "
                    f"from {result.metadata.get('sources')}"
                )
                legs = result.metadata.get("legs")
                if legs:
                    log_msg += f" (legs: {', '.join(f'{k}={v}' for k, v in legs.items())})"
                dropped = result.metadata.get("dropped")
                if dropped:
                    log_msg += f" (outliers: {', '.join(sorted(dropped))})"
                stale = result.metadata.get("stale")
                if stale:
                    log_msg += f" (stale: {', '.join(stale)})"
                logger.info(log_msg)
            else:
                failures = ", ".join(
                    f"{source}={e.kind.value}"
                    for key, _, _ in denom_config.legs()
                    for source, e in sorted(collected.errors.get(key, {}).items())
                )
                logger.warning(
                    f"[{self.name}] {denom}: aggregation failed ({result.error.value}); "
                    f"keeping previous rate. Source errors: {failures or 'none'}"
                )

    def _aggregate(
        self, denom_config: DenomConfig, collected: CollectionResult, now: float
    ) -> AggregationResult:
        legs = denom_config.legs()
        if len(legs) == 1:
            key = legs[0][0]
            return self.aggregator.aggregate(
                denom_config.denom, collected.quotes.get(key, []), now=now
            )
        results = [
            self.aggregator.aggregate(key, collected.quotes.get(key, []), now=now)
            for key, _, _ in legs
        ]
        return self.aggregator.cross_rate(denom_config.denom, results, now=now)

    async def tick(self, now: float | None = None) -> None:
        """Run one polling cycle.

        :param now: Current unix time (default: time.time()).
        """
        await self.refresh_rates(now)

        try:
            height = await self.chain.current_height()
        except QueryError as e:
            self.state.last_error = f"height: {e}"
            logger.warning(f"[{self.name}] Height query failed: {e}")
            return

        last = self.state.last_height
        if last is None:
            logger.info(f"[{self.name}] Starting at height {height}")
            self.state.last_height = height
            return
        if height < last:
            logger.warning(
                f"[{self.name}] Height went backwards ({last} -> {height}); ignoring"
            )
            return

        for h in range(last + 1, height + 1):
            # Marked before processing so a height is never handled twice
            self.state.last_height = h
            await self.state_machine.on_height(self.state, h, tip=height)

    async def run(self) -> None:
        """Tick forever, sleeping poll_interval between ticks."""
        logger.info(
            f"[{self.name}] Coordinator started: chain_id={self.network.chain_id}, "
            f"denoms={[d.denom for d in self.network.denoms]}, "
            f"vote_period={self.network.vote_period}, poll_interval={self.poll_interval}s"
        )
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"[{self.name}] Unexpected error in tick")
            await asyncio.sleep(self.poll_interval)
