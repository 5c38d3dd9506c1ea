"""Cross-checking determinations against an external reference calculator."""

from verification.policy_engine_client import PolicyEngineClient
from verification.reference_verifier import ReferenceResult, ReferenceVerifier

__all__ = ["PolicyEngineClient", "ReferenceResult", "ReferenceVerifier"]
