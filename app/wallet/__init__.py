# app/wallet/__init__.py
"""
Browser-style wallet connection for the access gateway client.

Key components:
- provider: picks one provider out of the injected wallet slot
- chains: the network definition the wallet must be on
- connector: WalletConnector state machine and the bound WalletClient
- errors: user-facing failure taxonomy with local diagnostics
"""
