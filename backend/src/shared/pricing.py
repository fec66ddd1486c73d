"""
Pricing engine - turns project sizing into a quote and a three-way payout split.
Pure functions: no I/O, deterministic given inputs and settings.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .config import config
from .errors import InvalidInput
from .models import Complexity

# (max hours until deadline, multiplier), checked in order
URGENCY_TIERS = (
    (24, Decimal('1.5')),
    (48, Decimal('1.3')),
    (72, Decimal('1.15')),
)

COMPLEXITY_MULTIPLIERS = {
    Complexity.EASY: Decimal('1.0'),
    Complexity.MEDIUM: Decimal('1.2'),
    Complexity.HARD: Decimal('1.5'),
}

BASIS_WORDS = 'words'
BASIS_PAGES = 'pages'


def to_units(value: Decimal) -> int:
    """Round to whole currency units, half away from zero."""
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def to_count(value, name: str) -> int:
    """Whole, non-negative sizing count; None and '' count as zero."""
    if value in (None, ''):
        return 0
    if isinstance(value, bool):
        raise InvalidInput(f'{name} must be a whole number')
    try:
        number = Decimal(str(value))
        if number != number.to_integral_value():
            raise InvalidInput(f'{name} must be a whole number')
        count = int(number)
    except (TypeError, ValueError, ArithmeticError):
        raise InvalidInput(f'{name} must be a whole number')
    if count < 0:
        raise InvalidInput('Word and page counts cannot be negative')
    return count


def urgency_multiplier(urgency_hours) -> Decimal:
    if urgency_hours is None:
        return Decimal('1.0')
    if isinstance(urgency_hours, bool):
        raise InvalidInput('Urgency hours must be a number')
    try:
        hours = Decimal(str(urgency_hours))
    except (TypeError, ValueError, ArithmeticError):
        raise InvalidInput('Urgency hours must be a number')
    if not hours.is_finite():
        raise InvalidInput('Urgency hours must be a number')
    if hours < 0:
        raise InvalidInput('Deadline is already in the past')
    for limit, multiplier in URGENCY_TIERS:
        if hours <= limit:
            return multiplier
    return Decimal('1.0')


def complexity_multiplier(complexity) -> Decimal:
    try:
        return COMPLEXITY_MULTIPLIERS[Complexity(complexity)]
    except ValueError:
        raise InvalidInput(f'Unknown complexity: {complexity}')


def base_price(word_count: Optional[int], page_count: Optional[int], settings=config, basis: str = None) -> tuple:
    """
    Compute the base price from the primary sizing basis.

    The primary basis comes from `basis` or PRICING_PRIMARY_BASIS. When the
    primary count is zero or absent the other basis is used instead; the two
    estimates are never compared against each other.

    Returns:
        tuple: (base_price, basis_used)
    """
    words = to_count(word_count, 'Word count')
    pages = to_count(page_count, 'Page count')
    if words == 0 and pages == 0:
        raise InvalidInput('Either word count or page count is required for a quote')

    primary = basis or settings.PRICING_PRIMARY_BASIS
    if primary not in (BASIS_WORDS, BASIS_PAGES):
        raise InvalidInput(f'Unknown pricing basis: {primary}')

    by_words = Decimal(words) * settings.PRICE_PER_WORD
    by_pages = Decimal(pages) * settings.PRICE_PER_PAGE

    if primary == BASIS_WORDS:
        return (by_words, BASIS_WORDS) if words else (by_pages, BASIS_PAGES)
    return (by_pages, BASIS_PAGES) if pages else (by_words, BASIS_WORDS)


def calculate_payment_split(user_quote: int, settings=config) -> tuple:
    """
    Split a user quote between doer, supervisor and platform.

    Commission and platform fee are rounded; the doer payout absorbs the
    remainder so the three parts always sum to the quote.

    Returns:
        tuple: (doer_payout, supervisor_commission, platform_fee)
    """
    total = Decimal(user_quote)
    supervisor_commission = to_units(total * settings.SUPERVISOR_COMMISSION_RATE)
    platform_fee = to_units(total * settings.PLATFORM_FEE_RATE)
    doer_payout = user_quote - supervisor_commission - platform_fee
    return doer_payout, supervisor_commission, platform_fee


def quote(word_count, page_count, urgency_hours, complexity, settings=config, basis: str = None) -> dict:
    """
    Produce a full quote for a project.

    Args:
        word_count: Words to deliver (0/None if priced by pages)
        page_count: Pages to deliver (0/None if priced by words)
        urgency_hours: Hours between now and the deadline
        complexity: easy, medium or hard
        settings: Object carrying the pricing constants (defaults to config)
        basis: Override for the primary pricing basis ('words' or 'pages')

    Returns:
        Quote dict with userQuote, doerPayout, supervisorCommission, platformFee
        and the breakdown used to compute them
    """
    base, basis_used = base_price(word_count, page_count, settings, basis)
    urgency = urgency_multiplier(urgency_hours)
    complexity_factor = complexity_multiplier(complexity)

    user_quote = to_units(base * urgency * complexity_factor)
    if user_quote <= 0:
        raise InvalidInput('Quote evaluates to zero')

    doer_payout, supervisor_commission, platform_fee = calculate_payment_split(user_quote, settings)

    return {
        'userQuote': user_quote,
        'doerPayout': doer_payout,
        'supervisorCommission': supervisor_commission,
        'platformFee': platform_fee,
        'basePrice': to_units(base),
        'pricingBasis': basis_used,
        'urgencyMultiplier': str(urgency),
        'complexityMultiplier': str(complexity_factor),
        'complexity': Complexity(complexity).value,
    }
