"""Ingestion layer.

Adapters that turn raw inputs (sensor line-protocol frames, bridge
envelopes) into typed values for the state and view layers.
"""

__all__: list[str] = []
