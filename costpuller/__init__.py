"""Per-account cloud spend puller: fetch, validate, normalize, reconcile."""

__version__ = "1.0.0"
