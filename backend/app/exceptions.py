"""Domain exceptions for the nudge pipeline"""


class NudgeError(Exception):
    """Base class for nudge pipeline errors"""
    pass


class NudgeNotFoundError(NudgeError):
    """Raised when a nudge id does not resolve to a record"""

    def __init__(self, nudge_id: str):
        super().__init__(f"Nudge {nudge_id} not found")
        self.nudge_id = nudge_id


class NudgeAccessDeniedError(NudgeError):
    """Raised when a user acts on a nudge they do not own"""

    def __init__(self, nudge_id: str, user_id: str):
        super().__init__(f"User {user_id} does not own nudge {nudge_id}")
        self.nudge_id = nudge_id
        self.user_id = user_id


class PushDispatchError(NudgeError):
    """Raised when the push service cannot be reached after retries"""
    pass


class StoreConfigurationError(NudgeError, ValueError):
    """Raised when the document store client cannot be configured"""
    pass
