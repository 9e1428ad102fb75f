"""Application package: domain, services, store backends and HTTP routes."""
