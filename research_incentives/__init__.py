"""Research incentive engine: policy resolution, base amount and author distribution."""

__version__ = "1.0.0"
