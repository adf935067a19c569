"""Credential lifecycle: policy, issuance, redemption and expiry"""
from domain.errors import AccessError
from .expiry import sweep_expired
from .issuer import CredentialIssuer
from .otp import TotpGenerator, generate_secret
from .policy import TimeWindowPolicy
from .redemption import RedemptionEngine, RedemptionResult

__all__ = [
    "AccessError",
    "sweep_expired",
    "CredentialIssuer",
    "TotpGenerator",
    "generate_secret",
    "TimeWindowPolicy",
    "RedemptionEngine",
    "RedemptionResult",
]
