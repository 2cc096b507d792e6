from __future__ import annotations


class CryptoShieldError(Exception):
    """Base class for agent errors."""


class InvalidSubject(CryptoShieldError, ValueError):
    """Malformed URL or address; rejected at the HTTP boundary."""


class InvalidAddress(InvalidSubject):
    pass


class InvalidScore(CryptoShieldError, ValueError):
    pass


class PolicyError(CryptoShieldError, ValueError):
    pass


class RegistryConflict(CryptoShieldError):
    pass


class AlreadyMinted(CryptoShieldError):
    """A wallet asked to mint a second Trust NFT."""


class ModelUnavailable(CryptoShieldError, RuntimeError):
    """The model could not produce a JSON object (no key, network, timeout, bad JSON).

    Routine: the orchestrator always recovers from it with the heuristic engine.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
