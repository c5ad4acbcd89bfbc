"""Exceptions raised by the credential scheme.

Errors are split into two families so callers can tell a malformed request
(fix the input) from a failed cryptographic check (abort or restart the
session with a fresh nonce).
"""


class CLError(Exception):
    """Base exception for all credential scheme errors"""

    pass


class MalformedInputError(CLError):
    """The input is structurally wrong, no cryptographic check was attempted"""

    pass


class CryptoCheckError(CLError):
    """A cryptographic check on the input failed"""

    pass


class UnsupportedParameterSizeError(MalformedInputError):
    """The requested security level is not one of the supported sizes"""

    pass


class IndexRangeError(MalformedInputError):
    """A reveal index set references a position outside the attribute partition"""

    pass


class CapacityError(MalformedInputError):
    """More attributes than the scheme parameters allow, or an attribute too large"""

    pass


class UnboundNymError(MalformedInputError):
    """The pseudonym was never issued a credential by this organization"""

    pass


class MembershipError(CryptoCheckError):
    """A group element is not a member of the group it is claimed to be in"""

    pass


class ProofVerificationError(CryptoCheckError):
    """A zero-knowledge proof did not verify"""

    pass


class NonceReuseError(CryptoCheckError):
    """A nonce was not issued, or has already been consumed"""

    pass


class GroupGenerationError(CLError):
    """The group parameter generator could not produce parameters"""

    pass


class UnverifiedCredentialError(CLError):
    """The credential was never verified and stored by the credential manager"""

    pass
