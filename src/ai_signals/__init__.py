"""AI-validated technical signal pipeline."""

__version__ = "0.1.0"
