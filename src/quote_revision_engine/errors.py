from __future__ import annotations


class QuoteEngineError(Exception):
    """Base class for every error the engine reports to its callers."""

    code = "quote_engine_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"error": self.code, "detail": self.message}


class CommandError(QuoteEngineError):
    """A single edit command failed validation.

    ``command_index`` is the position of the offending command inside the
    batch being applied, or ``None`` when the command was checked on its own.
    """

    code = "invalid_command"

    def __init__(self, message: str, *, command_index: int | None = None) -> None:
        super().__init__(message)
        self.command_index = command_index

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        if self.command_index is not None:
            data["command_index"] = self.command_index
        return data


class InvalidCommand(CommandError):
    code = "invalid_command"


class TargetNotFound(CommandError):
    code = "target_not_found"

    def __init__(self, target: str | None, *, command_index: int | None = None) -> None:
        super().__init__(f"No quote item matches {target!r}", command_index=command_index)
        self.target = target


class AmbiguousTarget(CommandError):
    code = "ambiguous_target"

    def __init__(
        self,
        target: str,
        candidates: list[str],
        *,
        command_index: int | None = None,
    ) -> None:
        listed = ", ".join(candidates)
        super().__init__(
            f"{target!r} matches several items equally well: {listed}",
            command_index=command_index,
        )
        self.target = target
        self.candidates = candidates


class InvalidQuantity(CommandError):
    code = "invalid_quantity"


class UnsupportedBulkOperation(CommandError):
    code = "unsupported_bulk_operation"


class CommandParseError(QuoteEngineError):
    code = "command_parse_error"


class QuoteNotFound(QuoteEngineError):
    code = "quote_not_found"

    def __init__(self, quote_id: str) -> None:
        super().__init__(f"Quote {quote_id} not found")
        self.quote_id = quote_id


class DuplicateQuote(QuoteEngineError):
    code = "duplicate_quote"

    def __init__(self, quote_id: str) -> None:
        super().__init__(f"Quote {quote_id} already exists")
        self.quote_id = quote_id


class QuoteNotEditable(QuoteEngineError):
    code = "quote_not_editable"

    def __init__(self, quote_id: str, status: str) -> None:
        super().__init__(f"Quote {quote_id} cannot be edited while {status}")
        self.quote_id = quote_id
        self.status = status


class InvalidStatusTransition(QuoteEngineError):
    code = "invalid_status_transition"

    def __init__(self, quote_id: str, current: str, requested: str) -> None:
        super().__init__(f"Quote {quote_id} cannot move from {current} to {requested}")
        self.quote_id = quote_id
        self.current = current
        self.requested = requested


class StaleQuoteVersion(QuoteEngineError):
    code = "stale_quote_version"

    def __init__(self, quote_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Quote {quote_id} is at version {actual}, session expected {expected}; reload and replay"
        )
        self.quote_id = quote_id
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> dict[str, object]:
        return {**super().to_dict(), "expected_version": self.expected, "actual_version": self.actual}


class SessionAlreadyActive(QuoteEngineError):
    code = "session_already_active"

    def __init__(self, quote_id: str, contractor_id: str) -> None:
        super().__init__(f"Quote {quote_id} already has an active review session held by {contractor_id}")
        self.quote_id = quote_id
        self.contractor_id = contractor_id


class NoActiveSession(QuoteEngineError):
    code = "no_active_session"

    def __init__(self, quote_id: str) -> None:
        super().__init__(f"Quote {quote_id} has no active review session")
        self.quote_id = quote_id


class InvalidSessionState(QuoteEngineError):
    code = "invalid_session_state"


class LowConfidenceRequiresConfirmation(QuoteEngineError):
    code = "low_confidence_requires_confirmation"

    def __init__(self, quote_id: str, command_indexes: list[int]) -> None:
        super().__init__(
            f"Quote {quote_id} has low-confidence commands at positions {command_indexes}; "
            "request confirmation before approving"
        )
        self.quote_id = quote_id
        self.command_indexes = command_indexes

    def to_dict(self) -> dict[str, object]:
        return {**super().to_dict(), "command_indexes": self.command_indexes}


__all__ = [
    "QuoteEngineError",
    "CommandError",
    "InvalidCommand",
    "TargetNotFound",
    "AmbiguousTarget",
    "InvalidQuantity",
    "UnsupportedBulkOperation",
    "CommandParseError",
    "QuoteNotFound",
    "DuplicateQuote",
    "QuoteNotEditable",
    "InvalidStatusTransition",
    "StaleQuoteVersion",
    "SessionAlreadyActive",
    "NoActiveSession",
    "InvalidSessionState",
    "LowConfidenceRequiresConfirmation",
]
