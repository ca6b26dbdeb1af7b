"""
Oracle Feeder - Exchange Rate Commit-Reveal Voting

This module provides exchange rate voting for a chain's oracle module:
- TradingPair: Base/quote pair sampled from price sources
- QuoteCollector: Concurrent per-source fetching with timeouts
- PriceAggregator: Staleness filter, outlier rejection and combination
- VoteStateMachine: Prevote/vote scheduling driven by block height
- SubmissionClient: Retrying, sequence-aware tx submission
- NetworkCoordinator: Per-network driver loop
- OracleFeeder: Main orchestrator for all networks
- fetchers: Modular price fetcher implementations
- signer: Signing daemon clients
"""

__version__ = "0.1.0"
