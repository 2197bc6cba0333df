# app/wallet/chains.py
from typing import Any, Dict, List, Union

from pydantic import BaseModel, Field

from app.core.config import settings


def parse_chain_id(value: Union[str, int]) -> int:
    """
    Normalize a chain id to an int.

    Providers report hex strings ("0x279f"), configuration may use either case
    or a decimal string.

    Raises:
        ValueError: If the value is not a chain id
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid chain id: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


class NativeCurrency(BaseModel):
    name: str
    symbol: str
    decimals: int = 18


class ChainDefinition(BaseModel):
    """
    Network the wallet must be on, in the shape wallet_addEthereumChain
    (EIP-3085) expects.
    """
    chain_id: str = Field(..., description="Hex chain id, e.g. '0x279F'")
    name: str
    native_currency: NativeCurrency
    rpc_urls: List[str]
    block_explorer_urls: List[str] = []

    @property
    def chain_id_int(self) -> int:
        return parse_chain_id(self.chain_id)

    def matches(self, chain_id: Union[str, int]) -> bool:
        try:
            return parse_chain_id(chain_id) == self.chain_id_int
        except (TypeError, ValueError):
            return False

    def to_add_chain_params(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "chainName": self.name,
            "nativeCurrency": self.native_currency.model_dump(),
            "rpcUrls": list(self.rpc_urls),
            "blockExplorerUrls": list(self.block_explorer_urls),
        }


def chain_from_settings() -> ChainDefinition:
    """Build the expected chain from CHAIN_* settings."""
    return ChainDefinition(
        chain_id=settings.CHAIN_ID,
        name=settings.CHAIN_NAME,
        native_currency=NativeCurrency(
            name=settings.CHAIN_CURRENCY_NAME,
            symbol=settings.CHAIN_CURRENCY_SYMBOL,
            decimals=settings.CHAIN_CURRENCY_DECIMALS,
        ),
        rpc_urls=[settings.CHAIN_RPC_URL],
        block_explorer_urls=[settings.CHAIN_EXPLORER_URL] if settings.CHAIN_EXPLORER_URL else [],
    )
