# app/access/catalog.py
"""
Product catalog for paid access.

Two tiers are sold:
- 24hour: a reusable session valid for 24 hours ($1.00)
- onetime: a single-use pass valid for 5 minutes ($0.10)

Prices are fixed in simulated mode. The catalog also converts USD prices into
USDC base units (6 decimals) so clients can build real payment requests later.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

# USDC has 6 decimals, so $1.00 = 1,000,000 base units
USDC_UNITS_PER_USD = 1_000_000


class GrantTier(Enum):
    """Class of access grant. Values are the wire names used by the API."""
    TIMED_SESSION = "24hour"
    SINGLE_USE = "onetime"


@dataclass(frozen=True)
class Product:
    """Static description of one purchasable tier."""
    tier: GrantTier
    name: str
    path: str
    amount_usd: float
    lifetime: timedelta
    valid_for: str
    description: str
    purchase_message: str

    @property
    def single_use(self) -> bool:
        return self.tier is GrantTier.SINGLE_USE


PRODUCTS: Dict[GrantTier, Product] = {
    GrantTier.TIMED_SESSION: Product(
        tier=GrantTier.TIMED_SESSION,
        name="24-Hour Access",
        path="/pay/session",
        amount_usd=1.0,
        lifetime=timedelta(hours=24),
        valid_for="24 hours",
        description="Get a session ID for 24 hours of unlimited access",
        purchase_message="24-hour access granted!",
    ),
    GrantTier.SINGLE_USE: Product(
        tier=GrantTier.SINGLE_USE,
        name="One-Time Access",
        path="/pay/onetime",
        amount_usd=0.1,
        lifetime=timedelta(minutes=5),
        valid_for="5 minutes (single use)",
        description="Single use payment for immediate access",
        purchase_message="One-time access granted!",
    ),
}


def get_product(tier: GrantTier) -> Product:
    """Look up the product for a tier."""
    return PRODUCTS[tier]


def lifetime_for(tier: GrantTier) -> timedelta:
    """Fixed lifetime of a grant of the given tier."""
    return PRODUCTS[tier].lifetime


def format_price(amount_usd: float) -> str:
    """Format a USD amount the way the catalog displays it ("$0.10")."""
    return f"${amount_usd:.2f}"


def usd_to_usdc_units(amount_usd: float) -> int:
    """
    Convert a USD price to USDC base units.

    Args:
        amount_usd: Price in USD

    Returns:
        Integer amount in USDC smallest units (6 decimals)
    """
    return int(round(amount_usd * USDC_UNITS_PER_USD))


def get_payment_options(api_prefix: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Build the public payment options listing.

    Args:
        api_prefix: Route prefix to prepend to endpoint paths. Uses config if not provided.

    Returns:
        List of option dicts in catalog order (24hour first, then onetime)
    """
    prefix = api_prefix if api_prefix is not None else settings.API_PREFIX
    options = []
    for product in PRODUCTS.values():
        options.append({
            "name": product.name,
            "endpoint": f"{prefix}{product.path}",
            "price": format_price(product.amount_usd),
            "description": product.description,
            "amountUsd": product.amount_usd,
            "amountUsdc": str(usd_to_usdc_units(product.amount_usd)),
            "validFor": product.valid_for,
        })
    return options
