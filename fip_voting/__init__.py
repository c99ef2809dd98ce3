"""Storage-weighted voting on Filecoin Improvement Proposals."""

__version__ = "1.0.0"
