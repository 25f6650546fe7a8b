"""LLM call ledger."""

from gameshaper.ledger.call_ledger import CallLedger, LedgerListener


__all__ = ["CallLedger", "LedgerListener"]
