"""Book lending service: book listings and the request/approval workflow."""

__version__ = "0.1.0"
