class CognitiaError(Exception):
    pass


class ValidationError(CognitiaError):
    pass


class SessionBoundToAnotherQuiz(ValidationError):
    """start() was called for a different (student, quiz) on a started session."""


class SessionNotStarted(CognitiaError):
    def __init__(self, message: str = "Quiz session not started"):
        super().__init__(message)


class StoreError(CognitiaError):
    pass


class DuplicateInProgressAttempt(StoreError):
    """The store rejected a second in-progress attempt for one (student, quiz)."""


class AIGenerationError(CognitiaError):
    pass
