"""Gatepass: visitor access requests and single-use gate passes."""

__version__ = "1.0.0"
