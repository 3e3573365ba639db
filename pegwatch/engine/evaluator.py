"""Alert trigger evaluation.

Everything here is pure: functions take an alert plus the price samples
gathered for it in the current tick and never touch the network or store.
"""

from typing import Iterable, Optional

from pegwatch.models import (
    Alert,
    DepegTarget,
    PairDepegTarget,
    PriceCondition,
    PriceSample,
    PriceTarget,
)


def price_condition_met(condition: PriceCondition, target: float, price: float) -> bool:
    """Check a price against a target; equality never triggers."""
    if condition == PriceCondition.ABOVE:
        return price > target
    if condition == PriceCondition.BELOW:
        return price < target
    return False


def _primary_sample(samples: Iterable[PriceSample], symbol: str) -> Optional[PriceSample]:
    wanted = symbol.upper()
    for sample in samples:
        if sample.symbol.upper() == wanted:
            return sample
    return None


def depeg_samples(alert: Alert, samples: Iterable[PriceSample]) -> list[PriceSample]:
    """Samples of the alert's symbol from the alert's own venues, in venue order."""
    variant = alert.variant
    if not isinstance(variant, DepegTarget):
        return []
    wanted = alert.symbol.upper()
    by_source = {
        s.source.lower(): s for s in samples if s.symbol.upper() == wanted
    }
    return [by_source[src] for src in variant.sources if src in by_source]


def depeg_deviation_pct(target: float, prices: Iterable[float]) -> Optional[float]:
    """Largest deviation from the target across prices, in percent.

    Returns:
        None when there are no prices to evaluate.
    """
    deviations = [abs(price - target) for price in prices]
    if not deviations or target <= 0:
        return None
    return max(deviations) / target * 100


def pair_ratio(price_a: float, price_b: float) -> Optional[float]:
    if price_b <= 0:
        return None
    return price_a / price_b


def pair_deviation_pct(ratio: float, expected_ratio: float) -> Optional[float]:
    if expected_ratio <= 0:
        return None
    return abs(ratio - expected_ratio) / expected_ratio * 100


def _pair_prices(alert: Alert, samples: list[PriceSample]) -> Optional[tuple[float, float]]:
    variant = alert.variant
    sample_a = _primary_sample(samples, variant.token_a)
    sample_b = _primary_sample(samples, variant.token_b)
    if sample_a is None or sample_b is None:
        return None
    return sample_a.price, sample_b.price


def should_trigger(alert: Alert, samples: Iterable[PriceSample]) -> bool:
    """Decide whether an alert fires given this tick's samples.

    Args:
        alert: The alert to evaluate.
        samples: Price samples gathered for it. Missing data is not an
            error; an alert without enough data simply does not fire.

    Returns:
        True if the alert's condition is met.
    """
    samples = list(samples)
    variant = alert.variant

    if isinstance(variant, PriceTarget):
        sample = _primary_sample(samples, alert.symbol)
        if sample is None:
            return False
        return price_condition_met(variant.condition, variant.target_price, sample.price)

    if isinstance(variant, DepegTarget):
        deviation = depeg_deviation_pct(
            variant.target_price, [s.price for s in depeg_samples(alert, samples)]
        )
        return deviation is not None and deviation > variant.differential_pct

    if isinstance(variant, PairDepegTarget):
        prices = _pair_prices(alert, samples)
        if prices is None:
            return False
        ratio = pair_ratio(*prices)
        if ratio is None:
            return False
        deviation = pair_deviation_pct(ratio, variant.expected_ratio)
        return deviation is not None and deviation > variant.differential_pct

    return False


def render_message(alert: Alert, samples: Iterable[PriceSample]) -> str:
    """Build the notification text for a triggered alert."""
    samples = list(samples)
    variant = alert.variant
    lines: list[str]

    if isinstance(variant, PriceTarget):
        sample = _primary_sample(samples, alert.symbol)
        direction = "above" if variant.condition == PriceCondition.ABOVE else "below"
        lines = [
            "🚨 Price Alert",
            f"Symbol: {alert.symbol}",
            f"Condition: {direction} ${variant.target_price:,.2f}",
        ]
        if sample is not None:
            lines.append(f"Current price: ${sample.price:,.2f} ({sample.source})")

    elif isinstance(variant, DepegTarget):
        venue_samples = depeg_samples(alert, samples)
        deviation = depeg_deviation_pct(variant.target_price, [s.price for s in venue_samples])
        lines = [
            "🚨 Depeg Alert",
            f"Stablecoin: {alert.symbol}",
            f"Peg: ${variant.target_price:.4f} (allowed ±{variant.differential_pct:g}%)",
        ]
        for s in venue_samples:
            lines.append(f"{s.source}: ${s.price:.4f}")
        if deviation is not None:
            lines.append(f"Max deviation: {deviation:.2f}%")

    elif isinstance(variant, PairDepegTarget):
        prices = _pair_prices(alert, samples)
        lines = [
            "🚨 Pair Alert",
            f"Pair: {variant.token_a}/{variant.token_b}",
            f"Expected ratio: {variant.expected_ratio:g} (allowed ±{variant.differential_pct:g}%)",
        ]
        if prices is not None:
            ratio = pair_ratio(*prices)
            if ratio is not None:
                lines.append(f"Current ratio: {ratio:.4f}")
                deviation = pair_deviation_pct(ratio, variant.expected_ratio)
                if deviation is not None:
                    lines.append(f"Deviation: {deviation:.2f}%")

    else:
        lines = [f"🚨 Alert {alert.symbol}"]

    if alert.id is not None:
        lines.append(f"Alert #{alert.id}")
    return "\n".join(lines)
