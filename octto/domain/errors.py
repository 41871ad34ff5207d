"""
Error taxonomy shared by the session and branch layers.

InvalidState is reported as ``ok=False`` and a timed-out wait is a normal
``status="timeout"`` result, so neither has an exception class here.
"""


class OcttoError(Exception):
    """Base class for all octto errors"""


class NotFoundError(OcttoError):
    """Referenced entity does not exist"""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str):
        super().__init__("Session", session_id)


class BranchNotFoundError(NotFoundError):
    def __init__(self, branch_id: str):
        super().__init__("Branch", branch_id)


class QuestionNotFoundError(NotFoundError):
    def __init__(self, question_id: str):
        super().__init__("Question", question_id)


class InvalidIdentifierError(OcttoError, ValueError):
    """Identifier rejected before it is used to build a filesystem path"""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Invalid session ID: {identifier!r}")


class QuestionConfigError(OcttoError, ValueError):
    """Question config does not match its declared type"""


class TransportFailure(OcttoError):
    """Transport listener could not be started"""
