"""
Error taxonomy for the review engine.

Services raise these; the HTTP layer maps them to status codes in one place
(see ``finnest.main``). Nothing in the engine retries.
"""


class EngineError(Exception):
    """Base exception for all engine failures."""
    pass


class NotFound(EngineError):
    """Referenced user, deck or card does not exist (or is not the caller's)."""
    pass


class InvalidGrade(EngineError):
    """Grade outside Again/Hard/Good/Easy."""
    pass


class InvalidState(EngineError):
    """Transition attempted on a card that cannot take it, e.g. a retired card."""
    pass


class StoreUnavailable(EngineError):
    """Storage collaborator failed or a per-user lock could not be acquired."""
    pass


class ParseFailure(EngineError):
    """Raised by the parser on malformed or unsupported input."""
    pass
