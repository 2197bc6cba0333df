# tests/test_wallet_connector.py
"""
Unit tests for the wallet connection state machine.

A scripted in-memory provider stands in for the browser wallet. Provider
round-trips can be held open with an asyncio.Event to exercise events that
arrive while connect() is suspended.
"""
import asyncio
import pytest
from collections import defaultdict

from app.wallet.chains import ChainDefinition, NativeCurrency
from app.wallet.connector import (
    NETWORK_CHANGED_MESSAGE,
    ConnectionStatus,
    WalletClient,
    WalletConnector,
)
from app.wallet.errors import (
    ChainReadFailure,
    GenericProviderError,
    NetworkAddRejected,
    NetworkSwitchRejected,
    NoAccountsFound,
    NoProviderAvailable,
    ProviderRpcError,
    UserRejectedConnection,
)
from app.wallet.provider import MULTIPLE_PROVIDERS_WARNING

ADDRESS = "0x1111111111111111111111111111111111111111"
OTHER_ADDRESS = "0x2222222222222222222222222222222222222222"
TARGET_CHAIN = "0x279F"
MAINNET = "0x1"

CHAIN = ChainDefinition(
    chain_id=TARGET_CHAIN,
    name="Monad Testnet",
    native_currency=NativeCurrency(name="Monad", symbol="MON", decimals=18),
    rpc_urls=["https://testnet-rpc.monad.xyz"],
    block_explorer_urls=["https://testnet.monadscan.com"],
)


class FakeProvider:
    """Scripted EIP-1193 provider."""

    def __init__(self, accounts=None, chain_id=TARGET_CHAIN, known_chains=None, errors=None,
                 emit_on_switch=False):
        self.accounts = list(accounts) if accounts is not None else [ADDRESS]
        self.chain_id = chain_id
        self.known_chains = {str(c).lower() for c in (known_chains or [chain_id, MAINNET])}
        self.errors = {method: list(queue) for method, queue in (errors or {}).items()}
        self.gates = {}
        self.emit_on_switch = emit_on_switch
        self.calls = []
        self.listeners = defaultdict(list)

    async def request(self, method, params=None):
        self.calls.append((method, params))
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        queue = self.errors.get(method)
        if queue:
            raise queue.pop(0)

        if method in ("eth_accounts", "eth_requestAccounts"):
            return list(self.accounts)
        if method == "eth_chainId":
            return self.chain_id
        if method == "wallet_switchEthereumChain":
            target = params[0]["chainId"]
            if target.lower() not in self.known_chains:
                raise ProviderRpcError(4902, f"Unrecognized chain ID {target}")
            self.chain_id = target
            if self.emit_on_switch:
                self.emit("chainChanged", target)
            return None
        if method == "wallet_addEthereumChain":
            self.known_chains.add(params[0]["chainId"].lower())
            return None
        if method == "eth_sendTransaction":
            return "0x" + "ab" * 32
        if method == "personal_sign":
            return "0xsigned"
        raise ProviderRpcError(-32601, f"Method not found: {method}")

    def on(self, event, handler):
        self.listeners[event].append(handler)

    def remove_listener(self, event, handler):
        self.listeners[event].remove(handler)

    def emit(self, event, *args):
        for handler in list(self.listeners[event]):
            handler(*args)

    def count(self, method):
        return sum(1 for called, _ in self.calls if called == method)

    def methods(self):
        return [called for called, _ in self.calls]


class MultiProvider:
    """Injected global that carries several providers."""

    def __init__(self, providers):
        self.providers = providers


def run(coro):
    return asyncio.run(coro)


async def settle():
    """Let scheduled tasks run up to their next suspension point."""
    for _ in range(5):
        await asyncio.sleep(0)


class TestConnect:
    """Test the happy paths of connect()."""

    def test_connect_on_expected_chain(self):
        """Already on the right chain: connected without a switch."""
        provider = FakeProvider()
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.status is ConnectionStatus.CONNECTED
        assert connection.is_connected is True
        assert connection.address == ADDRESS
        assert connection.chain_id == TARGET_CHAIN
        assert connection.last_error is None
        assert connector.client.account == ADDRESS
        assert provider.count("wallet_switchEthereumChain") == 0

    def test_chain_compared_numerically(self):
        """Lower-case and decimal chain ids match the configured hex id."""
        for reported in ("0x279f", "10143", 10143):
            provider = FakeProvider(chain_id=reported)
            connector = WalletConnector(provider, chain=CHAIN)
            assert run(connector.connect()).is_connected is True
            assert provider.count("wallet_switchEthereumChain") == 0

    def test_switches_to_known_chain(self):
        """A wallet on another known chain is switched."""
        provider = FakeProvider(chain_id=MAINNET, known_chains=[MAINNET, TARGET_CHAIN])
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.is_connected is True
        assert connection.chain_id == TARGET_CHAIN
        assert provider.calls[-1] == ("wallet_switchEthereumChain", [{"chainId": TARGET_CHAIN}])

    def test_adds_unknown_chain_then_switches(self):
        """4902 on switch: add the chain, then retry the switch once."""
        provider = FakeProvider(chain_id=MAINNET, known_chains=[MAINNET])
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.is_connected is True
        assert provider.methods() == [
            "eth_requestAccounts",
            "eth_chainId",
            "wallet_switchEthereumChain",
            "wallet_addEthereumChain",
            "wallet_switchEthereumChain",
        ]
        add_params = provider.calls[3][1][0]
        assert add_params["chainId"] == TARGET_CHAIN
        assert add_params["chainName"] == "Monad Testnet"
        assert add_params["nativeCurrency"] == {"name": "Monad", "symbol": "MON", "decimals": 18}
        assert add_params["rpcUrls"] == ["https://testnet-rpc.monad.xyz"]

    def test_own_switch_event_does_not_invalidate(self):
        """The chainChanged caused by the connector's own switch is expected."""
        provider = FakeProvider(chain_id=MAINNET, emit_on_switch=True)
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.is_connected is True
        assert connection.address == ADDRESS

    def test_reconnect_after_failure(self):
        """A later attempt clears the previous error."""
        provider = FakeProvider(errors={"eth_requestAccounts": [ProviderRpcError(4001, "User rejected the request.")]})
        connector = WalletConnector(provider, chain=CHAIN)

        assert run(connector.connect()).status is ConnectionStatus.ERROR
        connection = run(connector.connect())

        assert connection.is_connected is True
        assert connection.last_error is None
        assert connector.last_failure is None

    def test_address_unset_until_connected(self):
        """No address is exposed while the attempt is in flight."""
        async def scenario():
            provider = FakeProvider(chain_id=MAINNET)
            gate = asyncio.Event()
            provider.gates["wallet_switchEthereumChain"] = gate
            connector = WalletConnector(provider, chain=CHAIN)

            task = asyncio.ensure_future(connector.connect())
            await settle()
            during = connector.connection
            gate.set()
            after = await task
            return during, after

        during, after = run(scenario())
        assert during.status is ConnectionStatus.CONNECTING
        assert during.address is None
        assert after.address == ADDRESS


class TestProviderDiscovery:
    """Test how the injected slot is resolved."""

    def test_no_provider(self):
        """Nothing injected: error without ever connecting."""
        connector = WalletConnector(None, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.status is ConnectionStatus.ERROR
        assert connection.last_error == NoProviderAvailable.default_message
        assert isinstance(connector.last_failure, NoProviderAvailable)

    def test_list_of_providers_uses_first(self):
        """Several providers: the first is used and a warning recorded."""
        first, second = FakeProvider(), FakeProvider(accounts=[OTHER_ADDRESS])
        connector = WalletConnector([first, second], chain=CHAIN)

        connection = run(connector.connect())

        assert connection.address == ADDRESS
        assert connector.provider_warning == MULTIPLE_PROVIDERS_WARNING
        assert second.calls == []

    def test_nested_providers_list(self):
        """A global with a providers list behaves like a list."""
        first, second = FakeProvider(), FakeProvider()
        connector = WalletConnector(MultiProvider([first, second]), chain=CHAIN)

        assert run(connector.connect()).is_connected is True
        assert first.count("eth_requestAccounts") == 1
        assert second.calls == []

    def test_single_provider_no_warning(self):
        """A single provider produces no warning."""
        connector = WalletConnector(FakeProvider(), chain=CHAIN)
        run(connector.connect())
        assert connector.provider_warning is None


class TestConnectFailures:
    """Test the error taxonomy."""

    def test_user_rejected(self):
        """4001 on the account request is a cancelled connection."""
        provider = FakeProvider(errors={"eth_requestAccounts": [ProviderRpcError(4001, "User rejected the request.")]})
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.status is ConnectionStatus.ERROR
        assert connection.last_error == "user cancelled the connection request"
        assert connection.address is None
        assert connector.client is None
        assert isinstance(connector.last_failure, UserRejectedConnection)

    def test_rejection_detected_from_message(self):
        """Providers without a code still count as rejection by message."""
        provider = FakeProvider(errors={"eth_requestAccounts": [RuntimeError("User denied account authorization")]})
        connector = WalletConnector(provider, chain=CHAIN)

        run(connector.connect())

        assert isinstance(connector.last_failure, UserRejectedConnection)

    def test_no_accounts(self):
        """An empty account list is its own failure."""
        connector = WalletConnector(FakeProvider(accounts=[]), chain=CHAIN)

        connection = run(connector.connect())

        assert connection.last_error == NoAccountsFound.default_message

    def test_request_pending(self):
        """-32002 points the user at the pending wallet prompt."""
        provider = FakeProvider(errors={"eth_requestAccounts": [ProviderRpcError(-32002, "Already processing")]})
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert "already pending" in connection.last_error
        assert isinstance(connector.last_failure, GenericProviderError)

    def test_chain_read_failure(self):
        """eth_chainId failing is reported as a chain read failure."""
        provider = FakeProvider(errors={"eth_chainId": [ProviderRpcError(-32603, "Internal error")]})
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.last_error == ChainReadFailure.default_message

    def test_switch_rejected(self):
        """Declining the switch prompt."""
        provider = FakeProvider(
            chain_id=MAINNET,
            errors={"wallet_switchEthereumChain": [ProviderRpcError(4001, "User rejected the request.")]}
        )
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.status is ConnectionStatus.ERROR
        assert connection.last_error == NetworkSwitchRejected.default_message
        assert connection.address is None

    def test_add_rejected(self):
        """Declining the add-network prompt."""
        provider = FakeProvider(
            chain_id=MAINNET,
            known_chains=[MAINNET],
            errors={"wallet_addEthereumChain": [ProviderRpcError(4001, "User rejected the request.")]}
        )
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.last_error == NetworkAddRejected.default_message
        assert provider.count("wallet_switchEthereumChain") == 1

    def test_add_failure(self):
        """Other add-network errors carry the provider message."""
        provider = FakeProvider(
            chain_id=MAINNET,
            known_chains=[MAINNET],
            errors={"wallet_addEthereumChain": [ProviderRpcError(-32603, "bad rpc url")]}
        )
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.last_error == "could not add Monad Testnet to the wallet: bad rpc url"

    def test_switch_failure(self):
        """Other switch errors are generic provider errors."""
        provider = FakeProvider(
            chain_id=MAINNET,
            errors={"wallet_switchEthereumChain": [ProviderRpcError(-32603, "Internal error")]}
        )
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.connect())

        assert connection.last_error == "network switch failed: Internal error"

    def test_diagnostics_kept_locally(self):
        """The failure keeps the raw provider code and message."""
        provider = FakeProvider(errors={"eth_requestAccounts": [ProviderRpcError(4001, "User rejected the request.")]})
        connector = WalletConnector(provider, chain=CHAIN)

        run(connector.connect())

        diagnostics = connector.last_failure.diagnostics
        assert diagnostics["error"] == "UserRejectedConnection"
        assert diagnostics["code"] == 4001
        assert diagnostics["raw_message"] == "User rejected the request."
        assert diagnostics["stack"]


class TestReentrancyAndEvents:
    """Test events that arrive while an attempt is suspended."""

    def test_second_connect_ignored(self):
        """A connect() during connecting does not prompt again."""
        async def scenario():
            provider = FakeProvider()
            gate = asyncio.Event()
            provider.gates["eth_requestAccounts"] = gate
            connector = WalletConnector(provider, chain=CHAIN)

            first = asyncio.ensure_future(connector.connect())
            await settle()
            second = await connector.connect()
            gate.set()
            result = await first
            return provider, second, result

        provider, second, result = run(scenario())
        assert provider.count("eth_requestAccounts") == 1
        assert second.status is ConnectionStatus.CONNECTING
        assert result.is_connected is True

    def test_chain_change_mid_connect_invalidates(self):
        """A network change while connecting abandons the attempt."""
        async def scenario():
            provider = FakeProvider()
            gate = asyncio.Event()
            provider.gates["eth_requestAccounts"] = gate
            connector = WalletConnector(provider, chain=CHAIN)

            task = asyncio.ensure_future(connector.connect())
            await settle()
            provider.emit("chainChanged", MAINNET)
            gate.set()
            await task
            return provider, connector

        provider, connector = run(scenario())
        connection = connector.connection
        assert connection.status is ConnectionStatus.DISCONNECTED
        assert connection.address is None
        assert connection.last_error == NETWORK_CHANGED_MESSAGE
        assert connector.client is None
        assert provider.count("eth_chainId") == 0

    def test_accounts_cleared_mid_connect(self):
        """accountsChanged([]) while connecting ends the attempt disconnected."""
        async def scenario():
            provider = FakeProvider(chain_id=MAINNET)
            gate = asyncio.Event()
            provider.gates["wallet_switchEthereumChain"] = gate
            connector = WalletConnector(provider, chain=CHAIN)

            task = asyncio.ensure_future(connector.connect())
            await settle()
            provider.emit("accountsChanged", [])
            gate.set()
            await task
            return connector

        connector = run(scenario())
        assert connector.status is ConnectionStatus.DISCONNECTED
        assert connector.address is None

    def test_account_switch_mid_connect_binds_new_account(self):
        """A new first account reported while connecting is the one bound."""
        async def scenario():
            provider = FakeProvider(chain_id=MAINNET)
            gate = asyncio.Event()
            provider.gates["wallet_switchEthereumChain"] = gate
            connector = WalletConnector(provider, chain=CHAIN)

            task = asyncio.ensure_future(connector.connect())
            await settle()
            provider.emit("accountsChanged", [OTHER_ADDRESS])
            gate.set()
            await task
            return provider, connector

        provider, connector = run(scenario())
        assert connector.status is ConnectionStatus.CONNECTED
        assert connector.address == OTHER_ADDRESS
        assert connector.client.account == OTHER_ADDRESS
        assert provider.count("eth_requestAccounts") == 1

    def test_cancelled_connect_releases_connecting(self):
        """Cancelling the connect task leaves the connector able to retry."""
        async def scenario():
            provider = FakeProvider()
            gate = asyncio.Event()
            provider.gates["eth_requestAccounts"] = gate
            connector = WalletConnector(provider, chain=CHAIN)

            task = asyncio.ensure_future(connector.connect())
            await settle()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            after_cancel = connector.connection

            del provider.gates["eth_requestAccounts"]
            retried = await connector.connect()
            return after_cancel, retried

        after_cancel, retried = run(scenario())
        assert after_cancel.status is ConnectionStatus.DISCONNECTED
        assert after_cancel.address is None
        assert retried.is_connected is True

    def test_disconnect_mid_connect(self):
        """disconnect() during connecting wins over the suspended attempt."""
        async def scenario():
            provider = FakeProvider()
            gate = asyncio.Event()
            provider.gates["eth_requestAccounts"] = gate
            connector = WalletConnector(provider, chain=CHAIN)

            task = asyncio.ensure_future(connector.connect())
            await settle()
            connector.disconnect()
            gate.set()
            await task
            return connector

        connector = run(scenario())
        assert connector.status is ConnectionStatus.DISCONNECTED
        assert connector.client is None

    def test_accounts_cleared_when_connected(self):
        """Locking the wallet disconnects."""
        provider = FakeProvider()
        connector = WalletConnector(provider, chain=CHAIN)
        run(connector.connect())

        provider.emit("accountsChanged", [])

        assert connector.status is ConnectionStatus.DISCONNECTED
        assert connector.address is None
        assert connector.client is None

    def test_account_switch_rebinds(self):
        """A new first account while connected is bound without prompting."""
        provider = FakeProvider()
        connector = WalletConnector(provider, chain=CHAIN)
        run(connector.connect())

        provider.emit("accountsChanged", [OTHER_ADDRESS])

        assert connector.status is ConnectionStatus.CONNECTED
        assert connector.address == OTHER_ADDRESS
        assert connector.client.account == OTHER_ADDRESS
        assert provider.count("eth_requestAccounts") == 1

    def test_accounts_changed_ignored_when_disconnected(self):
        """A non-empty account list does not connect by itself."""
        provider = FakeProvider()
        connector = WalletConnector(provider, chain=CHAIN)
        connector.discover_provider()

        provider.emit("accountsChanged", [OTHER_ADDRESS])

        assert connector.status is ConnectionStatus.DISCONNECTED
        assert connector.address is None

    def test_chain_change_when_connected(self):
        """A real network change while connected forces a reconnect."""
        provider = FakeProvider()
        connector = WalletConnector(provider, chain=CHAIN)
        run(connector.connect())

        provider.emit("chainChanged", MAINNET)

        connection = connector.connection
        assert connection.status is ConnectionStatus.DISCONNECTED
        assert connection.chain_id == MAINNET
        assert connection.last_error == NETWORK_CHANGED_MESSAGE

    def test_same_chain_reannounced(self):
        """Re-announcing the current chain is not a change."""
        provider = FakeProvider()
        connector = WalletConnector(provider, chain=CHAIN)
        run(connector.connect())

        provider.emit("chainChanged", "0x279f")

        assert connector.status is ConnectionStatus.CONNECTED


class TestDisconnectAndRestore:
    """Test disconnect(), check_connection() and stall reporting."""

    def test_disconnect_idempotent(self):
        """Disconnecting twice is harmless."""
        connector = WalletConnector(FakeProvider(), chain=CHAIN)
        run(connector.connect())

        first = connector.disconnect()
        second = connector.disconnect()

        assert first.status is ConnectionStatus.DISCONNECTED
        assert second.status is ConnectionStatus.DISCONNECTED
        assert connector.client is None

    def test_check_connection_restores(self):
        """An authorized account is restored without a prompt."""
        provider = FakeProvider()
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.check_connection())

        assert connection.is_connected is True
        assert connection.address == ADDRESS
        assert provider.count("eth_requestAccounts") == 0

    def test_check_connection_without_accounts(self):
        """No authorized account: stay quietly disconnected."""
        connector = WalletConnector(FakeProvider(accounts=[]), chain=CHAIN)

        connection = run(connector.check_connection())

        assert connection.status is ConnectionStatus.DISCONNECTED
        assert connection.last_error is None

    def test_check_connection_on_other_chain(self):
        """An authorized wallet on the wrong network is not restored."""
        provider = FakeProvider(chain_id=MAINNET)
        connector = WalletConnector(provider, chain=CHAIN)

        connection = run(connector.check_connection())

        assert connection.status is ConnectionStatus.DISCONNECTED
        assert connection.address is None
        assert connection.chain_id == MAINNET
        assert connector.client is None
        assert provider.count("wallet_switchEthereumChain") == 0

        reconnected = run(connector.connect())
        assert reconnected.is_connected is True
        assert reconnected.chain_id == TARGET_CHAIN

    def test_check_connection_without_provider(self):
        """No provider: stay quietly disconnected."""
        connector = WalletConnector(None, chain=CHAIN)

        connection = run(connector.check_connection())

        assert connection.status is ConnectionStatus.DISCONNECTED
        assert connection.last_error is None

    def test_stalled_provider_reported(self):
        """A provider that never answers is flagged after the stall window."""
        async def scenario():
            now = [100.0]
            provider = FakeProvider()
            provider.gates["eth_requestAccounts"] = asyncio.Event()
            connector = WalletConnector(provider, chain=CHAIN, stall_after=30, clock=lambda: now[0])

            task = asyncio.ensure_future(connector.connect())
            await settle()
            early = connector.connection
            now[0] += 31
            late = connector.connection
            recovered = connector.disconnect()
            task.cancel()
            return early, late, recovered

        early, late, recovered = run(scenario())
        assert early.status is ConnectionStatus.CONNECTING
        assert early.stalled is False
        assert late.stalled is True
        assert recovered.status is ConnectionStatus.DISCONNECTED
        assert recovered.stalled is False

    def test_close_unsubscribes(self):
        """close() removes the event handlers."""
        provider = FakeProvider()
        connector = WalletConnector(provider, chain=CHAIN)
        run(connector.connect())

        connector.close()
        provider.emit("accountsChanged", [])

        assert connector.status is ConnectionStatus.CONNECTED
        assert provider.listeners["accountsChanged"] == []


class TestWalletClient:
    """Test the signing client handed out on connect."""

    def test_send_transaction(self):
        """Transactions are sent from the bound account on the bound chain."""
        provider = FakeProvider()
        client = WalletClient(ADDRESS, CHAIN, provider)

        tx_hash = run(client.send_transaction({"to": OTHER_ADDRESS, "value": "0x1"}))

        assert tx_hash.startswith("0x")
        method, params = provider.calls[-1]
        assert method == "eth_sendTransaction"
        assert params == [{"from": ADDRESS, "chainId": TARGET_CHAIN, "to": OTHER_ADDRESS, "value": "0x1"}]

    def test_sign_message(self):
        """Messages are hex-encoded for personal_sign."""
        provider = FakeProvider()
        client = WalletClient(ADDRESS, CHAIN, provider)

        signature = run(client.sign_message("hi"))

        assert signature == "0xsigned"
        assert provider.calls[-1] == ("personal_sign", ["0x6869", ADDRESS])
