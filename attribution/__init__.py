"""Conversion attribution service.

Ingests affiliate-network conversions (signed push webhooks, GET postbacks,
scheduled polling) into an append-only ledger and ranks recorded clicks as
attribution candidates for conversions that arrive without a tracking id.
"""

__all__: list[str] = []
