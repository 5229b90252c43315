"""
Error taxonomy shared by the normalizer, update engine and publisher.

Every error carries the Micropub ``error`` code and the HTTP status the
Flask layer answers with.
"""


class MicropubError(Exception):
    error = "invalid_request"
    status = 400

    def __init__(self, description: str = ""):
        super().__init__(description)
        self.description = description

    def to_json(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class DecodeError(MicropubError):
    """Malformed JSON or a missing required property in a create request."""


class UpdateProtocolError(MicropubError):
    """An update document violates the Micropub update rules."""


class AuthError(MicropubError):
    """No usable token, or the token endpoint could not validate it."""

    error = "unauthorized"
    status = 401


class AuthMismatch(MicropubError):
    """The token is valid but was issued for somebody else's site."""

    error = "forbidden"
    status = 403


class PostNotFound(MicropubError):
    error = "not_found"
    status = 404


class PersistenceError(MicropubError):
    """Storage failed. The description never carries database details."""

    error = "server_error"
    status = 500

    def __init__(self, description: str = "could not save the post"):
        super().__init__(description)


class MediaError(MicropubError):
    error = "server_error"
    status = 502
