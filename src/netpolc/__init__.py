"""netpolc — compile declarative allow-lists into cluster network policies."""

__version__ = "0.1.0"
