"""
Providers package - Portfolio data vendor adapters.
"""

from portfolio_providers.providers.alchemy import AlchemyAdapter
from portfolio_providers.providers.covalent import CovalentAdapter
from portfolio_providers.providers.moralis import MoralisAdapter


__all__ = [
    "AlchemyAdapter",
    "CovalentAdapter",
    "MoralisAdapter",
]
