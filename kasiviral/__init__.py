"""KasiViral API: subscription-gated thread generation."""

__version__ = "0.1.0"
