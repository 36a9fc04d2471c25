"""
Collaborator interfaces for the decision core.

Market data and model invocation live outside this package; the pipeline and
trend guard only talk to them through these protocols.
"""
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Union

from src.signals.models import CoinSnapshot


class MarketDataProvider(Protocol):
    async def get_snapshot(self, symbol: str) -> Optional[CoinSnapshot]:
        """Latest snapshot for one symbol, or None when unavailable"""
        ...

    async def get_snapshots(self, symbols: Iterable[str]) -> Dict[str, CoinSnapshot]:
        ...


class ModelClient(Protocol):
    model_id: str

    async def generate(self, prompt: str) -> str:
        """Return the raw model reply; raise ModelRateLimitError / ModelCallError on failure"""
        ...


class StaticMarketDataProvider:
    """Serves fixed snapshots (replays, tests)"""

    def __init__(self, snapshots: Mapping[str, Union[CoinSnapshot, dict]]):
        self._snapshots: Dict[str, CoinSnapshot] = {
            symbol: data if isinstance(data, CoinSnapshot) else CoinSnapshot.from_dict(data, symbol=symbol)
            for symbol, data in snapshots.items()
        }

    @property
    def symbols(self) -> List[str]:
        return list(self._snapshots)

    async def get_snapshot(self, symbol: str) -> Optional[CoinSnapshot]:
        return self._snapshots.get(symbol)

    async def get_snapshots(self, symbols: Iterable[str]) -> Dict[str, CoinSnapshot]:
        return {s: self._snapshots[s] for s in symbols if s in self._snapshots}


class StaticModelClient:
    """Returns canned replies in order, repeating the last one"""

    def __init__(self, replies: List[str], model_id: str = "static"):
        if not replies:
            raise ValueError("StaticModelClient needs at least one reply")
        self.model_id = model_id
        self._replies = list(replies)
        self.calls: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.calls.append(prompt)
        index = min(len(self.calls) - 1, len(self._replies) - 1)
        return self._replies[index]
