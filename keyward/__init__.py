"""SSH public key ingestion and authorized_keys synchronization."""

__version__ = "0.1.0"
