"""
Exceptions for the ctvault package
Everything raised on purpose derives from CtVaultError so callers have one thing to catch
"""


class CtVaultError(Exception):
    # general container for errors
    pass


class ContractViolation(CtVaultError, ValueError):
    # raised when a caller passes a key, IV, salt or KGK of the wrong fixed size
    pass


class FormatError(CtVaultError):
    # raised when the envelope format flag is not recognized
    pass


class IntegrityError(CtVaultError):
    # raised when an envelope cannot be opened (wrong password or corrupted data)
    pass


class SessionLockedError(CtVaultError):
    # raised when a session operation needs an unlocked vault
    pass
