"""Exception hierarchy for the notifier."""


class NotifierError(Exception):
    """Base class for notifier errors."""


class AlreadyActiveError(NotifierError):
    """Raised when a connection is started for an account that already has one."""

    def __init__(self, account_id: int):
        super().__init__(f"Account {account_id} is already being monitored")
        self.account_id = account_id


class AccountNotFoundError(NotifierError):
    """Raised when the account store has no such account."""

    def __init__(self, account_id: int):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class SessionError(NotifierError):
    """Transient connectivity failure of a streaming session."""


class AuthenticationError(SessionError):
    """The exchange rejected the signed authentication request."""
