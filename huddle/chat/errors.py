"""Internal error types for the chat core.

None of these reach the client directly: the coordinator logs them and turns
the offending event into a no-op.
"""


class ChatError(Exception):
    """Base class for chat core errors."""


class UnknownSession(ChatError):
    """An event referenced a connection with no registered session."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"No session for connection {connection_id}")
        self.connection_id = connection_id


class MessageNotFound(ChatError):
    """A reaction or read receipt targeted a message that does not exist."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id
