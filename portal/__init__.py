"""SchoolGate: credential issuance and per-portal session lifecycle."""

__version__ = "1.0.0"
