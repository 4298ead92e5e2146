"""kube-external-dns - keep DNS provider records in sync with service endpoints."""

__version__ = "0.3.0"
