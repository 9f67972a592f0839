"""
xAPT Payment Protocol Module.

This module implements the server half of the xAPT pay-per-request
protocol: HTTP 402 responses carrying an X-Aptos-Payment-Required header,
and verification of X-Aptos-Payment proofs through a facilitator.

Key components:
- codec: encoding/decoding of the protocol headers
- rules: path-prefix payment rules
- facilitator: HTTP client for the verification service
- middleware: FastAPI middleware gating protected paths
- replay: short-lived record of consumed proofs
- audit: payment decision audit logging

Configuration is loaded from environment variables via xapt.core.config.
"""

__version__ = "0.1.0"
