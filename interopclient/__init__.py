"""Client for QUIC interop runner test cases."""

__version__ = "0.1.0"
