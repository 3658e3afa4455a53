"""Exchange gateway and the Binance USD-M futures client."""

from signal_executor.exchange.base import ExchangeGateway
from signal_executor.exchange.binance import BinanceFuturesClient

__all__ = ["BinanceFuturesClient", "ExchangeGateway"]
