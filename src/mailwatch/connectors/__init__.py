"""Upstream provider adapters.

Connectors are transport-only: they authenticate, call the provider API and
hand back provider-native payloads. All sync semantics live in
``mailwatch.sync``.
"""

__all__ = ["credentials", "gmail"]
