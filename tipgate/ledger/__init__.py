"""Tip ledger: entities, fee computation and the settlement state machine.

Tips are created pending with a fee estimate and only the SettlementEngine
moves them to completed, failed or refunded.
"""
