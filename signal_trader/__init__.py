"""KDJ signal trader: turns indicator signals into orders on a fixed tick."""

__version__ = "0.1.0"
