"""FeederConfig: Feeder configuration from a TOML file and the environment.

Example file::

    [listen]
    addr = "127.0.0.1"
    port = 3822

    [https]
    proxy = "http://proxy.internal:3128"

    [aggregation]
    max_deviation_percent = 5.0
    max_quote_age = 60
    statistic = "mean"

    [sources.api_keys]
    alphavantage = "..."

    [[networks]]
    id = "columbus"
    chain_id = "columbus-4"
    rpc_url = "http://127.0.0.1:26657"
    lcd_url = "http://127.0.0.1:1317"
    feeder = "terra1..."
    validator = "terravaloper1..."

    [networks.fee]
    denom = "ukrw"
    amount = 356100
    gas = 200000

    [networks.denoms.ukrw]
    pair = "luna/krw"
    sources = ["coinone", "bithumb", "gopax"]

    # Cross rate: luna/krw from exchanges times krw/sdr from the IMF
    [networks.denoms.usdr]
    pair = "luna/sdr"
    via = "krw"
    sources = ["coinone", "bithumb"]
    via_sources = ["imf_sdr"]
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from . import __version__
from .TradingPair import TradingPair
from .VoteMessages import Fee

DEFAULT_LISTEN_ADDR = "127.0.0.1"
DEFAULT_LISTEN_PORT = 3822
DEFAULT_MEMO = f"oracle-feeder/{__version__}"

ENV_API_KEY_PREFIXES = ("API_KEY_", "APIKEY_")


class ConfigError(ValueError):
    """Raised when the configuration is invalid."""


@dataclass(frozen=True)
class DenomConfig:
    """Price sources for one voted denom.

    A denom is priced either directly from ``pair`` or, when ``via`` is set,
    as the cross rate ``base/via`` times ``via/quote``.

    :ivar denom: Chain denom (e.g., "ukrw").
    :ivar pair: Pair the denom is priced in.
    :ivar sources: Fetcher names sampled for ``pair``, or for the first leg
        of a cross rate.
    :ivar via: Intermediate currency of a cross rate.
    :ivar via_sources: Fetcher names sampled for the second leg.
    """

    denom: str
    pair: TradingPair
    sources: tuple[str, ...]
    via: str | None = None
    via_sources: tuple[str, ...] = ()

    def legs(self) -> tuple[tuple[str, TradingPair, tuple[str, ...]], ...]:
        """(collection key, pair, sources) of every pair to sample.

        A direct denom has one leg keyed by the denom itself.
        """
        if self.via is None:
            return ((self.denom, self.pair, self.sources),)
        first = TradingPair(self.pair.base, self.via)
        second = TradingPair(self.via, self.pair.quote)
        return (
            (f"{self.denom}:{first}", first, self.sources),
            (f"{self.denom}:{second}", second, self.via_sources),
        )


@dataclass(frozen=True)
class NetworkConfig:
    """One chain the feeder votes on.

    :ivar id: Local name of the network.
    :ivar chain_id: Chain id put in tx bodies.
    :ivar rpc_url: Tendermint RPC URL.
    :ivar lcd_url: LCD (REST) URL.
    :ivar feeder: Feeder account address.
    :ivar validator: Validator operator address.
    :ivar denoms: Voted denoms.
    :ivar signer_url: Signer daemon URL or socket; None for a dry run.
    """

    id: str
    chain_id: str
    rpc_url: str
    lcd_url: str
    feeder: str
    validator: str
    denoms: tuple[DenomConfig, ...]
    signer_url: str | None = None
    account_prefix: str = "terra"
    validator_prefix: str = "terravaloper"
    vote_period: int = 5
    poll_interval: float = 1.0
    max_rate_age: float = 60.0
    memo: str = DEFAULT_MEMO
    fee: Fee = field(default_factory=Fee)
    query_timeout: float = 5.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 5.0
    broadcast_timeout: float = 30.0

    def pairs(self) -> dict[str, tuple[TradingPair, tuple[str, ...]]]:
        """Leg key to (pair, sources), as taken by the quote collector."""
        return {
            key: (pair, sources)
            for d in self.denoms
            for key, pair, sources in d.legs()
        }

    def sources(self) -> set[str]:
        return {source for d in self.denoms for _, _, sources in d.legs() for source in sources}


@dataclass(frozen=True)
class AggregationConfig:
    max_deviation_percent: float = 5.0
    max_quote_age: float = 60.0
    statistic: str = "mean"
    min_sources: int = 1
    fetch_timeout: float = 5.0


@dataclass(frozen=True)
class FeederConfig:
    """Complete feeder configuration.

    :ivar networks: Networks to vote on.
    :ivar aggregation: Aggregation settings shared by all networks.
    :ivar api_keys: Source name to API key.
    :ivar listen_addr: Status listener address.
    :ivar listen_port: Status listener port.
    :ivar listen_enabled: Whether to serve the status listener.
    :ivar proxy: Optional egress proxy for source traffic.
    """

    networks: tuple[NetworkConfig, ...]
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    api_keys: dict[str, str] = field(default_factory=dict)
    listen_addr: str = DEFAULT_LISTEN_ADDR
    listen_port: int = DEFAULT_LISTEN_PORT
    listen_enabled: bool = True
    proxy: str | None = None

    def sources(self) -> list[str]:
        """Every source used by any network, sorted."""
        return sorted({s for network in self.networks for s in network.sources()})

    @classmethod
    def load(cls, path: str) -> FeederConfig:
        """Load a TOML configuration file.

        :param path: Path to the file.
        :returns: Parsed configuration.
        :raises ConfigError: If the file cannot be read or is invalid.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {path}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FeederConfig:
        """Build a configuration from parsed TOML.

        :raises ConfigError: On missing or invalid fields.
        """
        _check_keys("top level", data, {"listen", "https", "aggregation", "sources", "networks"})

        listen = _table(data, "listen")
        _check_keys("[listen]", listen, {"addr", "port", "enabled"})
        https = _table(data, "https")
        _check_keys("[https]", https, {"proxy"})
        sources = _table(data, "sources")
        _check_keys("[sources]", sources, {"api_keys"})
        api_keys = {
            str(k).lower(): str(v) for k, v in _table(sources, "api_keys").items()
        }

        networks_data = data.get("networks")
        if not isinstance(networks_data, list) or not networks_data:
            raise ConfigError("At least one [[networks]] table is required")
        networks = tuple(_parse_network(n) for n in networks_data)
        ids = [n.id for n in networks]
        if len(set(ids)) != len(ids):
            raise ConfigError(f"Duplicate network ids: {ids}")

        config = cls(
            networks=networks,
            aggregation=_parse_aggregation(_table(data, "aggregation")),
            api_keys=api_keys,
            listen_addr=str(listen.get("addr", DEFAULT_LISTEN_ADDR)),
            listen_port=_int("[listen] port", listen.get("port", DEFAULT_LISTEN_PORT)),
            listen_enabled=bool(listen.get("enabled", True)),
            proxy=https.get("proxy") or None,
        )
        config.validate()
        return config

    def with_env(self, environ: Mapping[str, str] | None = None) -> FeederConfig:
        """Apply environment overrides.

        Recognized: API_KEY_<SOURCE> / APIKEY_<SOURCE>, API_KEYS,
        FETCH_TIMEOUT, MAX_DEVIATION_PERCENT, LISTEN_PORT.

        :raises ConfigError: If an override is not a number.
        """
        environ = os.environ if environ is None else environ

        api_keys = dict(self.api_keys)
        api_keys.update(parse_env_api_keys(environ))
        api_keys.update(parse_api_keys(environ.get("API_KEYS")))

        aggregation = self.aggregation
        if environ.get("FETCH_TIMEOUT"):
            aggregation = replace(
                aggregation, fetch_timeout=_float("FETCH_TIMEOUT", environ["FETCH_TIMEOUT"])
            )
        if environ.get("MAX_DEVIATION_PERCENT"):
            aggregation = replace(
                aggregation,
                max_deviation_percent=_float(
                    "MAX_DEVIATION_PERCENT", environ["MAX_DEVIATION_PERCENT"]
                ),
            )

        listen_port = self.listen_port
        if environ.get("LISTEN_PORT"):
            listen_port = _int("LISTEN_PORT", environ["LISTEN_PORT"])

        config = replace(
            self, api_keys=api_keys, aggregation=aggregation, listen_port=listen_port
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Check value ranges.

        :raises ConfigError: On the first invalid value.
        """
        agg = self.aggregation
        if agg.max_deviation_percent <= 0:
            raise ConfigError("max_deviation_percent must be positive")
        if agg.max_quote_age <= 0:
            raise ConfigError("max_quote_age must be positive")
        if agg.statistic not in ("mean", "median"):
            raise ConfigError(f"statistic must be 'mean' or 'median', got {agg.statistic!r}")
        if agg.min_sources < 1:
            raise ConfigError("min_sources must be at least 1")
        if agg.fetch_timeout <= 0:
            raise ConfigError("fetch_timeout must be positive")
        if not 0 < self.listen_port < 65536:
            raise ConfigError(f"Invalid listen port {self.listen_port}")
        for network in self.networks:
            prefix = f"[networks.{network.id}]"
            if network.vote_period < 1:
                raise ConfigError(f"{prefix} vote_period must be at least 1")
            if network.poll_interval <= 0:
                raise ConfigError(f"{prefix} poll_interval must be positive")
            if network.max_rate_age <= 0:
                raise ConfigError(f"{prefix} max_rate_age must be positive")
            if network.max_attempts < 1:
                raise ConfigError(f"{prefix} max_attempts must be at least 1")
            if not 0 <= network.backoff_base <= network.backoff_max:
                raise ConfigError(f"{prefix} backoff must satisfy 0 <= base <= max")
            if not network.denoms:
                raise ConfigError(f"{prefix} at least one denom is required")


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: source1=key1,source2=key2
    Example: alphavantage=abc123,currencylayer=xyz789

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping source names to API keys.
    """
    if not api_key_str:
        return {}

    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            source, key = item.split("=", 1)
            api_keys[source.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Parse API keys from individual environment variables.

    Looks for: API_KEY_ALPHAVANTAGE, APIKEY_CURRENCYLAYER, etc.

    :returns: Dict mapping source names to API keys.
    """
    environ = os.environ if environ is None else environ
    api_keys = {}
    for key, value in environ.items():
        for prefix in ENV_API_KEY_PREFIXES:
            if key.startswith(prefix) and value:
                api_keys[key[len(prefix):].lower()] = value
                break
    return api_keys


def _table(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _check_keys(where: str, data: Mapping[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigError(f"Unknown keys in {where}: {', '.join(unknown)}")


def _int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def _float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _parse_aggregation(data: Mapping[str, Any]) -> AggregationConfig:
    _check_keys(
        "[aggregation]",
        data,
        {"max_deviation_percent", "max_quote_age", "statistic", "min_sources", "fetch_timeout"},
    )
    defaults = AggregationConfig()
    return AggregationConfig(
        max_deviation_percent=_float(
            "max_deviation_percent",
            data.get("max_deviation_percent", defaults.max_deviation_percent),
        ),
        max_quote_age=_float("max_quote_age", data.get("max_quote_age", defaults.max_quote_age)),
        statistic=str(data.get("statistic", defaults.statistic)).lower(),
        min_sources=_int("min_sources", data.get("min_sources", defaults.min_sources)),
        fetch_timeout=_float("fetch_timeout", data.get("fetch_timeout", defaults.fetch_timeout)),
    )


NETWORK_REQUIRED = ("id", "chain_id", "rpc_url", "lcd_url", "feeder", "validator")
NETWORK_FLOATS = (
    "poll_interval",
    "max_rate_age",
    "query_timeout",
    "backoff_base",
    "backoff_max",
    "broadcast_timeout",
)
NETWORK_INTS = ("vote_period", "max_attempts")
NETWORK_STRINGS = ("signer_url", "account_prefix", "validator_prefix", "memo")


def _parse_network(data: Any) -> NetworkConfig:
    if not isinstance(data, Mapping):
        raise ConfigError("[[networks]] entries must be tables")
    _check_keys(
        "[[networks]]",
        data,
        set(NETWORK_REQUIRED + NETWORK_FLOATS + NETWORK_INTS + NETWORK_STRINGS)
        | {"fee", "denoms"},
    )
    missing = [k for k in NETWORK_REQUIRED if not data.get(k)]
    if missing:
        raise ConfigError(f"[[networks]] missing required keys: {', '.join(missing)}")

    network_id = str(data["id"])
    kwargs: dict[str, Any] = {k: str(data[k]) for k in NETWORK_REQUIRED}
    for key in NETWORK_FLOATS:
        if key in data:
            kwargs[key] = _float(f"[networks.{network_id}] {key}", data[key])
    for key in NETWORK_INTS:
        if key in data:
            kwargs[key] = _int(f"[networks.{network_id}] {key}", data[key])
    for key in NETWORK_STRINGS:
        if key in data:
            kwargs[key] = str(data[key])
    # Empty signer_url means dry run
    if not kwargs.get("signer_url"):
        kwargs["signer_url"] = None

    fee_data = _table(data, "fee")
    _check_keys(f"[networks.{network_id}.fee]", fee_data, {"denom", "amount", "gas"})
    default_fee = Fee()
    kwargs["fee"] = Fee(
        amount=_int("fee amount", fee_data.get("amount", default_fee.amount)),
        denom=str(fee_data.get("denom", default_fee.denom)),
        gas=_int("fee gas", fee_data.get("gas", default_fee.gas)),
    )

    denoms = []
    for denom, denom_data in sorted(_table(data, "denoms").items()):
        where = f"[networks.{network_id}.denoms.{denom}]"
        if not isinstance(denom_data, Mapping):
            raise ConfigError(f"{where} must be a table")
        _check_keys(where, denom_data, {"pair", "sources", "via", "via_sources"})
        try:
            pair = TradingPair.from_string(str(denom_data.get("pair", "")))
        except ValueError as e:
            raise ConfigError(f"{where} {e}") from e
        sources = _source_names(where, "sources", denom_data.get("sources"))

        via = None
        via_sources: tuple[str, ...] = ()
        if "via" in denom_data:
            via = str(denom_data["via"]).strip().lower()
            if not via or via in pair.as_tuple():
                raise ConfigError(
                    f"{where} via must be a currency other than {pair.base} and {pair.quote}"
                )
            via_sources = _source_names(where, "via_sources", denom_data.get("via_sources"))
        elif "via_sources" in denom_data:
            raise ConfigError(f"{where} via_sources requires via")

        denoms.append(
            DenomConfig(
                denom=str(denom),
                pair=pair,
                sources=sources,
                via=via,
                via_sources=via_sources,
            )
        )
    kwargs["denoms"] = tuple(denoms)

    return NetworkConfig(**kwargs)


def _source_names(where: str, key: str, value: Any) -> tuple[str, ...]:
    if (
        not isinstance(value, list)
        or not value
        or not all(isinstance(s, str) and s.strip() for s in value)
    ):
        raise ConfigError(f"{where} {key} must be a non-empty list of names")
    return tuple(s.strip().lower() for s in value)
