"""
Reference facilitator: verifies payments against an in-memory ledger.
"""
