# app/core/config.py
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Access Gateway"
    API_PREFIX: str = "/api"

    # Payment settings (all optional in simulated mode)
    NETWORK: str = "monad-testnet"
    PAY_TO_ADDRESS: str = "0x000000000000000000000000000000000000dEaD"
    PAYMENT_MODE: str = "simulated-payments"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # Payment ledger
    LEDGER_MAX_ENTRIES: int = 100
    LEDGER_DEFAULT_LIMIT: int = 25

    # Grant audit trail (JSON lines)
    AUDIT_LOG_ENABLED: bool = False
    AUDIT_LOG_PATH: str = "logs/access_audit.jsonl"

    # Chain the wallet must be on (EIP-3085 definition)
    CHAIN_ID: str = "0x279F"  # 10143
    CHAIN_NAME: str = "Monad Testnet"
    CHAIN_CURRENCY_NAME: str = "Monad"
    CHAIN_CURRENCY_SYMBOL: str = "MON"
    CHAIN_CURRENCY_DECIMALS: int = 18
    CHAIN_RPC_URL: str = "https://testnet-rpc.monad.xyz"
    CHAIN_EXPLORER_URL: str = "https://testnet.monadscan.com"

    # Client side
    API_BASE_URL: str = "http://localhost:3001/api"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    WALLET_CONNECT_STALL_SECONDS: float = 60.0

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
