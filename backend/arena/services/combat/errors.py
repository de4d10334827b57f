class CommandRejected(Exception):
    """A client command that was refused without touching the session."""

    kind = 'rejected'

    def __init__(self, message: str = ''):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_ack(self) -> dict:
        return {'ok': False, 'error': self.kind, 'message': self.message}


class Unauthorized(CommandRejected):
    kind = 'unauthorized'


class InvalidState(CommandRejected):
    kind = 'invalid_state'


class MalformedInput(CommandRejected):
    kind = 'malformed_input'
