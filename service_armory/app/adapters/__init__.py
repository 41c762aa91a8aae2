"""Upstream API clients."""

from .battlenet_client import BattleNetClient
from .oauth import ClientCredentials, ClientCredentialsTokenSource
from .raiderio_client import RaiderIOClient
from .warcraftlogs_client import WarcraftLogsClient

__all__ = [
    "BattleNetClient",
    "ClientCredentials",
    "ClientCredentialsTokenSource",
    "RaiderIOClient",
    "WarcraftLogsClient",
]
