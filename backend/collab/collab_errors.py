# engine errors are raised to the caller; the HTTP layer wraps them into an ErrorDTO for the frontend.


class CollabError(Exception):
    """
    Base class for all collaboration-engine errors.
    """
    pass


class NoActiveTransactionError(CollabError):
    """
    Raised when record() is called while no transaction is open.
    This is a programming error in the caller, never retried.
    """
    pass


class ShapeNotFoundError(CollabError):
    """
    Raised when a local mutator targets a shape id that is not in the store.
    """
    pass


class InvalidShapeError(CollabError):
    """
    Raised when a shape record fails validation.
    Contains the list of structured validation issues.
    """

    def __init__(self, issues):
        super().__init__("; ".join(issue.message for issue in issues) or "Invalid shape")
        self.issues = issues


class HistoryApplyError(CollabError):
    """
    Raised when the apply callback fails during undo/redo.
    The command is back on the stack it was taken from.
    """
    pass


class SessionNotFoundError(CollabError):
    """
    Raised when a session id is unknown to the session store.
    """
    pass
