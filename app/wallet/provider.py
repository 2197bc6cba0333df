# app/wallet/provider.py
"""
Injected wallet provider discovery.

Browsers expose wallets through one global slot that may hold nothing, a
single provider, a list of providers, or a provider carrying a `providers`
list when several extensions compete for the slot. discover_provider()
collapses all of these into one concrete provider handle so the rest of the
client never branches on the shape of the global.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol

from app.wallet.errors import NoProviderAvailable

logger = logging.getLogger(__name__)

MULTIPLE_PROVIDERS_WARNING = "Multiple wallet providers detected; using the first one"


class EthereumProvider(Protocol):
    """The subset of EIP-1193 the wallet client relies on."""

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        ...

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        ...

    def remove_listener(self, event: str, handler: Callable[..., Any]) -> None:
        ...


@dataclass(frozen=True)
class ProviderResolution:
    """The provider selected from the injected global."""
    provider: Any
    candidate_count: int
    warning: Optional[str] = None


def _candidates(injected: Any) -> List[Any]:
    if injected is None:
        return []
    if isinstance(injected, (list, tuple)):
        return [candidate for candidate in injected if candidate is not None]

    nested = getattr(injected, "providers", None)
    if isinstance(nested, (list, tuple)) and nested:
        return [candidate for candidate in nested if candidate is not None]

    return [injected]


def discover_provider(injected: Any) -> ProviderResolution:
    """
    Select one provider from the injected global.

    Args:
        injected: Whatever the host environment placed in the wallet slot

    Returns:
        ProviderResolution holding the first candidate. When several are
        present a warning is attached and logged; the user is never asked.

    Raises:
        NoProviderAvailable: If no provider is injected
    """
    candidates = _candidates(injected)
    if not candidates:
        raise NoProviderAvailable()

    warning = None
    if len(candidates) > 1:
        warning = MULTIPLE_PROVIDERS_WARNING
        logger.warning(f"{warning} ({len(candidates)} found)")

    return ProviderResolution(provider=candidates[0], candidate_count=len(candidates), warning=warning)
