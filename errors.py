"""
Error taxonomy shared by the HTTP API and the realtime gateway.

Every error carries a ``kind`` (sent to clients verbatim) and the HTTP status
the API answers with.
"""


class ChatError(Exception):
    kind = 'InternalError'
    status = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'kind': self.kind, 'message': self.message}


class ValidationError(ChatError):
    """Malformed input. The request is rejected and nothing is stored."""
    kind = 'ValidationError'
    status = 400


class NotFound(ChatError):
    """A referenced user, room or message does not exist."""
    kind = 'NotFound'
    status = 404


class InternalError(ChatError):
    kind = 'InternalError'
    status = 500
