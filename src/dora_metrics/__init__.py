"""dora-metrics: delivery performance indicators from GitHub pull requests."""

__version__ = "0.1.0"
