"""TradingPair: Base/quote currency pair sampled from price sources.

Each configured denom is backed by one trading pair, e.g. the ``ukrw`` denom
is priced from the ``luna/krw`` pair on Korean exchanges.

.. code-block:: python

    >>> pair = TradingPair("LUNA", "KRW")
    >>> str(pair)
    'luna/krw'
    >>> TradingPair.from_string("luna/usdt").symbol("-")
    'LUNA-USDT'
"""

from __future__ import annotations


class TradingPair:
    """A currency pair quoted by external price sources.

    :ivar base: Base currency symbol (lowercase).
    :ivar quote: Quote currency symbol (lowercase).
    """

    def __init__(self, base: str, quote: str) -> None:
        """Initialize a trading pair.

        :param base: Base currency symbol (e.g., "luna").
        :param quote: Quote currency symbol (e.g., "krw", "usd").
        """
        self.base = base.lower()
        self.quote = quote.lower()

    def __str__(self) -> str:
        return f"{self.base}/{self.quote}"

    def __repr__(self) -> str:
        return f"TradingPair({self.base!r}, {self.quote!r})"

    def __hash__(self) -> int:
        return hash(str(self))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TradingPair):
            return NotImplemented
        return str(self) == str(other)

    def symbol(self, separator: str = "", *, upper: bool = True) -> str:
        """Render the pair as an exchange ticker symbol.

        :param separator: String placed between base and quote.
        :param upper: Upper-case the symbols (most exchanges expect this).
        :returns: Ticker symbol such as "LUNAKRW" or "LUNA-KRW".
        """
        base, quote = self.base, self.quote
        if upper:
            base, quote = base.upper(), quote.upper()
        return f"{base}{separator}{quote}"

    def as_tuple(self) -> tuple[str, str]:
        """Return ``(base, quote)`` as used by the fetcher interface."""
        return (self.base, self.quote)

    @classmethod
    def from_string(cls, pair_str: str) -> TradingPair:
        """Parse a pair string in format "base/quote".

        :param pair_str: Pair string like "luna/krw".
        :returns: New TradingPair instance.
        :raises ValueError: If the string is not two non-empty symbols
            separated by a single slash.
        """
        parts = pair_str.strip().lower().split("/")
        if len(parts) != 2 or not all(p.strip() for p in parts):
            raise ValueError(
                f"Invalid pair format '{pair_str}'. Expected 'base/quote' (e.g., 'luna/krw')"
            )
        return cls(parts[0].strip(), parts[1].strip())
