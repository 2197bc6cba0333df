# app/wallet/connector.py
"""
Wallet connection state machine.

States: disconnected -> connecting -> connected, with error as the landing
state for a failed attempt. connect() suspends at every provider round-trip
(account request, chain id read, chain switch/add). While it is suspended:

- a second connect() is ignored, so the user never sees two prompts
- an accountsChanged([]) or chainChanged event, or disconnect(), bumps the
  attempt generation; the suspended attempt notices on resume and abandons
  without touching state
- an accountsChanged with a new first account replaces the account the
  attempt binds once the network is verified

A provider that never answers leaves the connector in connecting; the
`stalled` flag on the snapshot reports that once WALLET_CONNECT_STALL_SECONDS
have passed, and disconnect() recovers from it.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from app.core.config import settings
from app.wallet.chains import ChainDefinition, chain_from_settings, parse_chain_id
from app.wallet.errors import (
    REQUEST_PENDING,
    UNRECOGNIZED_CHAIN,
    ChainReadFailure,
    ConnectionInvalidated,
    GenericProviderError,
    NetworkAddRejected,
    NetworkSwitchRejected,
    NoAccountsFound,
    NoProviderAvailable,
    ProviderRpcError,
    UserRejectedConnection,
    WalletError,
)
from app.wallet.provider import EthereumProvider, ProviderResolution, discover_provider as resolve_injected

logger = logging.getLogger(__name__)

ACCOUNTS_CHANGED = "accountsChanged"
CHAIN_CHANGED = "chainChanged"

NETWORK_CHANGED_MESSAGE = "network changed; reconnect required"


class ConnectionStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class WalletConnection:
    """Point-in-time view of the connector. `address` is set only when connected."""
    status: ConnectionStatus
    address: Optional[str] = None
    chain_id: Optional[str] = None
    last_error: Optional[str] = None
    stalled: bool = False

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


class WalletClient:
    """Signing client bound to one account on one chain."""

    def __init__(self, account: str, chain: ChainDefinition, provider: EthereumProvider):
        self.account = account
        self.chain = chain
        self.provider = provider

    async def send_transaction(self, transaction: Dict[str, Any]) -> str:
        """Ask the wallet to sign and submit a transaction; returns its hash."""
        tx = {"from": self.account, "chainId": self.chain.chain_id}
        tx.update(transaction)
        return await self.provider.request("eth_sendTransaction", [tx])

    async def sign_message(self, message: str) -> str:
        """personal_sign a UTF-8 message with the bound account."""
        payload = "0x" + message.encode("utf-8").hex()
        return await self.provider.request("personal_sign", [payload, self.account])

    def __repr__(self) -> str:
        return f"WalletClient(account={self.account!r}, chain={self.chain.chain_id!r})"


async def _call(provider: EthereumProvider, method: str, params: Optional[List[Any]] = None) -> Any:
    """Send one request, normalizing foreign provider failures to ProviderRpcError."""
    try:
        if params is None:
            return await provider.request(method)
        return await provider.request(method, params)
    except ProviderRpcError:
        raise
    except Exception as e:
        raise ProviderRpcError(code=getattr(e, "code", None), message=str(e), data=getattr(e, "data", None)) from e


def _is_rejection(error: ProviderRpcError) -> bool:
    if error.user_rejected:
        return True
    message = (error.message or "").lower()
    return "rejected" in message or "denied" in message


class WalletConnector:
    """
    Connects to an injected wallet and keeps the connection state current.

    Args:
        injected: The host's wallet slot (None, a provider, or several)
        chain: Network to require. Uses CHAIN_* settings if not provided.
        stall_after: Seconds in connecting before the snapshot reports stalled.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        injected: Any,
        chain: Optional[ChainDefinition] = None,
        stall_after: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self._injected = injected
        self._chain = chain or chain_from_settings()
        self._stall_after = stall_after if stall_after is not None else settings.WALLET_CONNECT_STALL_SECONDS
        self._clock = clock

        self._resolution: Optional[ProviderResolution] = None
        self._status = ConnectionStatus.DISCONNECTED
        self._address: Optional[str] = None
        self._chain_id: Optional[str] = None
        self._client: Optional[WalletClient] = None
        self._last_error: Optional[str] = None
        self._failure: Optional[WalletError] = None
        self._attempt = 0
        self._connecting_since: Optional[float] = None
        self._pending_switch: Optional[int] = None
        self._pending_account: Optional[str] = None

    # -- state -------------------------------------------------------------

    @property
    def connection(self) -> WalletConnection:
        stalled = (
            self._status is ConnectionStatus.CONNECTING
            and self._connecting_since is not None
            and self._clock() - self._connecting_since > self._stall_after
        )
        return WalletConnection(
            status=self._status,
            address=self._address,
            chain_id=self._chain_id,
            last_error=self._last_error,
            stalled=stalled,
        )

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def client(self) -> Optional[WalletClient]:
        return self._client

    @property
    def chain(self) -> ChainDefinition:
        return self._chain

    @property
    def last_failure(self) -> Optional[WalletError]:
        """The last failure with its diagnostics. Local use only."""
        return self._failure

    @property
    def provider_warning(self) -> Optional[str]:
        return self._resolution.warning if self._resolution else None

    def _bind(self, account: str, chain_id: Optional[str], provider: EthereumProvider) -> None:
        self._address = account
        self._chain_id = chain_id
        self._client = WalletClient(account, self._chain, provider)
        self._status = ConnectionStatus.CONNECTED
        self._connecting_since = None
        self._pending_switch = None
        self._pending_account = None
        self._last_error = None
        self._failure = None

    def _reset(self, status: ConnectionStatus, last_error: Optional[str] = None) -> None:
        # Any suspended attempt is stale from here on
        self._attempt += 1
        self._address = None
        self._client = None
        self._connecting_since = None
        self._pending_switch = None
        self._pending_account = None
        self._status = status
        self._last_error = last_error

    def _fail(self, error: WalletError) -> None:
        self._reset(ConnectionStatus.ERROR, last_error=error.user_message)
        self._failure = error
        logger.error(f"Wallet connection failed: {error.user_message}")
        logger.debug(f"Wallet failure diagnostics: {error.diagnostics}")

    def _ensure_current(self, attempt: Optional[int]) -> None:
        if attempt is not None and attempt != self._attempt:
            raise ConnectionInvalidated()

    # -- provider ----------------------------------------------------------

    def discover_provider(self) -> ProviderResolution:
        """
        Resolve the injected provider once and subscribe to its events.

        Raises:
            NoProviderAvailable: If nothing is injected
        """
        if self._resolution is None:
            resolution = resolve_injected(self._injected)
            provider = resolution.provider
            if hasattr(provider, "on"):
                provider.on(ACCOUNTS_CHANGED, self.handle_accounts_changed)
                provider.on(CHAIN_CHANGED, self.handle_chain_changed)
            self._resolution = resolution
        return self._resolution

    def close(self) -> None:
        """Unsubscribe from provider events."""
        if self._resolution is None:
            return
        provider = self._resolution.provider
        if hasattr(provider, "remove_listener"):
            provider.remove_listener(ACCOUNTS_CHANGED, self.handle_accounts_changed)
            provider.remove_listener(CHAIN_CHANGED, self.handle_chain_changed)
        self._resolution = None

    # -- operations --------------------------------------------------------

    async def check_connection(self) -> WalletConnection:
        """
        Restore an existing authorization without prompting (eth_accounts).

        Stays disconnected quietly when there is no provider, no authorized
        account, or the wallet is on another network (connect() switches it).
        """
        if self._status in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            return self.connection

        try:
            provider = self.discover_provider().provider
        except NoProviderAvailable:
            return self.connection

        attempt = self._attempt
        try:
            accounts = await _call(provider, "eth_accounts")
            if not accounts or attempt != self._attempt:
                return self.connection
            chain_id = await _call(provider, "eth_chainId")
        except ProviderRpcError as e:
            logger.warning(f"Failed to check existing wallet connection: {e.message}")
            return self.connection

        if attempt != self._attempt or self._status is ConnectionStatus.CONNECTING:
            return self.connection

        if not self._chain.matches(chain_id):
            logger.info(f"Authorized wallet is on chain {chain_id}, not {self._chain.chain_id}; not restoring")
            self._chain_id = chain_id
            return self.connection

        self._bind(accounts[0], chain_id, provider)
        logger.info(f"Restored wallet connection for {accounts[0]}")
        return self.connection

    async def connect(self) -> WalletConnection:
        """
        Run one full connection attempt.

        Failures are not raised: they land in status=error with a user-facing
        `last_error`, and the exception with diagnostics in `last_failure`.

        Returns:
            The connection snapshot after the attempt
        """
        if self._status is ConnectionStatus.CONNECTING:
            logger.warning("connect() ignored: a connection attempt is already in progress")
            return self.connection

        self._last_error = None
        self._failure = None

        try:
            provider = self.discover_provider().provider
        except NoProviderAvailable as e:
            self._fail(e)
            return self.connection

        self._reset(ConnectionStatus.CONNECTING)
        self._connecting_since = self._clock()
        attempt = self._attempt

        try:
            accounts = await self._request_accounts(provider)
            self._ensure_current(attempt)
            if not accounts:
                raise NoAccountsFound()

            chain_id = await self.verify_network(attempt=attempt)
            self._ensure_current(attempt)

            # The wallet may have switched accounts while we were suspended
            account = self._pending_account or accounts[0]
            self._bind(account, chain_id, provider)
            logger.info(f"Wallet connected: {account} on chain {chain_id}")
        except asyncio.CancelledError:
            if attempt == self._attempt:
                self._reset(ConnectionStatus.DISCONNECTED)
            raise
        except ConnectionInvalidated:
            logger.info("Connection attempt abandoned: superseded by a wallet event")
        except WalletError as e:
            if attempt == self._attempt:
                self._fail(e)

        return self.connection

    async def _request_accounts(self, provider: EthereumProvider) -> List[str]:
        try:
            accounts = await _call(provider, "eth_requestAccounts")
        except ProviderRpcError as e:
            if _is_rejection(e):
                raise UserRejectedConnection(cause=e) from e
            if e.code == REQUEST_PENDING:
                raise GenericProviderError(
                    "a connection request is already pending; check your wallet extension", cause=e
                ) from e
            if e.message:
                raise GenericProviderError(f"connection failed: {e.message}", cause=e) from e
            raise GenericProviderError(cause=e) from e
        return list(accounts or [])

    async def verify_network(
        self,
        expected: Optional[ChainDefinition] = None,
        attempt: Optional[int] = None
    ) -> str:
        """
        Make sure the wallet is on the expected chain, switching if needed.

        If the wallet does not know the chain (4902) it is asked to add it,
        then the switch is retried once.

        Args:
            expected: Chain to require. Defaults to the connector's chain.
            attempt: Connection attempt this call belongs to, if any.

        Returns:
            The chain id the wallet is now on

        Raises:
            ChainReadFailure, NetworkSwitchRejected, NetworkAddRejected,
            GenericProviderError, ConnectionInvalidated
        """
        chain = expected or self._chain
        provider = self.discover_provider().provider

        try:
            current = await _call(provider, "eth_chainId")
        except ProviderRpcError as e:
            raise ChainReadFailure(cause=e) from e
        self._ensure_current(attempt)
        self._chain_id = current

        if chain.matches(current):
            return current

        logger.info(f"Wallet on chain {current}, switching to {chain.name} ({chain.chain_id})")
        self._pending_switch = chain.chain_id_int
        try:
            try:
                await self._switch_chain(provider, chain)
            except ProviderRpcError as e:
                if e.code != UNRECOGNIZED_CHAIN:
                    raise self._switch_failure(e) from e
                self._ensure_current(attempt)
                await self._add_chain(provider, chain)
                self._ensure_current(attempt)
                try:
                    await self._switch_chain(provider, chain)
                except ProviderRpcError as retry_error:
                    raise self._switch_failure(retry_error) from retry_error
        finally:
            if attempt is None or attempt == self._attempt:
                self._pending_switch = None

        self._ensure_current(attempt)
        self._chain_id = chain.chain_id
        return chain.chain_id

    async def _switch_chain(self, provider: EthereumProvider, chain: ChainDefinition) -> None:
        await _call(provider, "wallet_switchEthereumChain", [{"chainId": chain.chain_id}])

    async def _add_chain(self, provider: EthereumProvider, chain: ChainDefinition) -> None:
        logger.info(f"Chain {chain.chain_id} unknown to wallet, requesting wallet_addEthereumChain")
        try:
            await _call(provider, "wallet_addEthereumChain", [chain.to_add_chain_params()])
        except ProviderRpcError as e:
            if e.user_rejected:
                raise NetworkAddRejected(cause=e) from e
            raise GenericProviderError(
                f"could not add {chain.name} to the wallet: {e.message or 'unknown error'}", cause=e
            ) from e

    def _switch_failure(self, error: ProviderRpcError) -> WalletError:
        if error.user_rejected:
            return NetworkSwitchRejected(cause=error)
        return GenericProviderError(f"network switch failed: {error.message or 'unknown error'}", cause=error)

    def disconnect(self) -> WalletConnection:
        """Drop the bound account and client. Safe to call in any state."""
        if self._status is not ConnectionStatus.DISCONNECTED:
            logger.info("Wallet disconnected")
        self._reset(ConnectionStatus.DISCONNECTED)
        self._failure = None
        return self.connection

    # -- provider events ---------------------------------------------------

    def handle_accounts_changed(self, accounts: Optional[List[str]]) -> None:
        """
        accountsChanged: an empty list disconnects from any state; a new first
        account while connected is re-bound without a new prompt, and while
        connecting it replaces the account the attempt will bind.
        """
        accounts = list(accounts or [])
        if not accounts:
            logger.info("Wallet reported no accounts")
            self.disconnect()
            return

        account = accounts[0]
        if self._status is ConnectionStatus.CONNECTING:
            logger.info(f"Wallet account switched to {account} during connection")
            self._pending_account = account
            return

        if self._status is not ConnectionStatus.CONNECTED:
            logger.debug(f"Ignoring accountsChanged while {self._status.value}")
            return

        if self._address is not None and account.lower() == self._address.lower():
            return

        logger.info(f"Wallet account switched to {account}")
        self._bind(account, self._chain_id, self._client.provider if self._client else self._resolution.provider)

    def handle_chain_changed(self, chain_id: Union[str, int]) -> None:
        """
        chainChanged: live chain migration is not supported, so a real change
        forces disconnected and an explicit reconnect. The switch requested by
        the connector itself, and re-announcements of the current chain, are
        not changes.
        """
        try:
            new_chain = parse_chain_id(chain_id)
        except (TypeError, ValueError):
            new_chain = None

        if self._pending_switch is not None and new_chain == self._pending_switch:
            self._chain_id = chain_id
            return

        if new_chain is not None and self._chain_id is not None:
            try:
                if parse_chain_id(self._chain_id) == new_chain:
                    return
            except (TypeError, ValueError):
                pass

        previous = self._status
        self._chain_id = chain_id
        if previous in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            logger.warning(f"Network changed to {chain_id} while {previous.value}; reconnect required")
            self._reset(ConnectionStatus.DISCONNECTED, last_error=NETWORK_CHANGED_MESSAGE)
            self._chain_id = chain_id
