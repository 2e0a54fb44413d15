"""ElectricUI binary protocol engine."""

__version__ = "1.0.0"
