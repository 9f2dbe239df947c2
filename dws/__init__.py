"""dws — developer workspace provisioning from layered manifests."""

__version__ = "0.1.0"
