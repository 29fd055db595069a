from __future__ import annotations


class SalesflowError(Exception):
    """Base error for every failure raised by the sales lifecycle services."""


class NotFoundError(SalesflowError):
    def __init__(self, entity_type: str, entity_id: object) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} '{entity_id}' not found")


class InvalidStateError(SalesflowError):
    """Raised when a transition is not allowed from the record's current state."""


class PreconditionError(InvalidStateError):
    """Raised when the state is right but a required condition does not hold."""


class ValidationError(SalesflowError):
    """Carries one message per violated input rule."""

    def __init__(self, messages: list[str] | str) -> None:
        self.messages = [messages] if isinstance(messages, str) else list(messages)
        super().__init__("; ".join(self.messages))
