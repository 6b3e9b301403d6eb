"""
datamarket/settlement/fees.py

Fee & settlement calculator.

All amounts are Decimal. Purchase fees are rounded half-up to four places;
bounty fees are exact in ledger units, matching what the ledger withholds.
Wei conversion for the ledger boundary lives in datamarket.money.

Usage:
    from datamarket.settlement.fees import quote_purchase, quote_bounty_fee

    quote = quote_purchase("100")
    quote.platform_fee   # Decimal('2.5000')
    quote.total          # Decimal('102.5000')
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..config import (
    PLATFORM_FEE_BPS,
    BPS_DENOMINATOR,
    FEE_DECIMALS,
    FEE_QUANTUM,
    NETWORK_FEE_ESTIMATE,
)
from ..errors import InvalidAmount
from ..money import AmountLike, from_units, to_decimal, to_units

logger = logging.getLogger("datamarket.settlement.fees")


# ============================================================================
# HELPERS
# ============================================================================

def fee_rate(fee_bps: int = PLATFORM_FEE_BPS) -> Decimal:
    """Fee rate as a Decimal fraction (250 bps -> 0.025)."""
    return Decimal(fee_bps) / Decimal(BPS_DENOMINATOR)


def quantize(amount: Decimal) -> Decimal:
    """
    Round half-up to the display precision.

    Raises:
        InvalidAmount: amount has too many digits to hold four decimals
    """
    try:
        return amount.quantize(FEE_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount(f"amount {amount} is too large", amount)


def pad(amount: Decimal) -> Decimal:
    """Show at least the display precision without dropping any digits."""
    if amount.as_tuple().exponent > -FEE_DECIMALS:
        return quantize(amount)
    return amount


# ============================================================================
# QUOTES
# ============================================================================

@dataclass(frozen=True)
class PurchaseQuote:
    """Price breakdown shown before a purchase."""
    price: Decimal
    platform_fee: Decimal
    network_fee_estimate: Decimal
    total: Decimal

    def to_dict(self) -> dict:
        return {
            "price": str(self.price),
            "platformFee": str(self.platform_fee),
            "networkFeeEstimate": str(self.network_fee_estimate),
            "total": str(self.total),
        }


@dataclass(frozen=True)
class BountyFeeQuote:
    """Split of a bounty reward at fulfillment."""
    reward: Decimal
    platform_fee: Decimal
    net_reward: Decimal
    fee_bps: int = PLATFORM_FEE_BPS

    def to_dict(self) -> dict:
        return {
            "reward": str(self.reward),
            "platformFee": str(self.platform_fee),
            "netReward": str(self.net_reward),
            "feeBps": self.fee_bps,
        }


def quote_purchase(price: AmountLike, fee_bps: int = PLATFORM_FEE_BPS) -> PurchaseQuote:
    """
    Quote a dataset purchase.

    The network fee is informational and not part of the total.

    Args:
        price: Listed price in coins
        fee_bps: Platform fee in basis points

    Returns:
        PurchaseQuote

    Raises:
        InvalidAmount: price is negative or malformed
    """
    value = to_decimal(price, "price")
    if value < 0:
        raise InvalidAmount(f"price must be non-negative, got {value}", price)

    platform_fee = quantize(value * fee_rate(fee_bps))
    total = quantize(value + platform_fee)
    return PurchaseQuote(
        price=value,
        platform_fee=platform_fee,
        network_fee_estimate=NETWORK_FEE_ESTIMATE,
        total=total,
    )


def quote_bounty_fee(reward: AmountLike, fee_bps: int = PLATFORM_FEE_BPS) -> BountyFeeQuote:
    """
    Quote the fee withheld from a bounty reward when it is fulfilled.

    The ledger withholds this fee itself, in whole ledger units rounded
    down, so the fee is computed the same way and the quoted net reward is
    exactly what the fulfiller receives. Amounts are only padded to the
    display precision, never rounded.

    Raises:
        InvalidAmount: reward is negative or malformed
    """
    value = to_decimal(reward, "reward")
    if value < 0:
        raise InvalidAmount(f"reward must be non-negative, got {value}", reward)

    reward_units = to_units(value)
    fee_units = reward_units * fee_bps // BPS_DENOMINATOR
    return BountyFeeQuote(
        reward=value,
        platform_fee=pad(from_units(fee_units)),
        net_reward=pad(from_units(reward_units - fee_units)),
        fee_bps=fee_bps,
    )
