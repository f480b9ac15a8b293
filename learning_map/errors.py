"""Error taxonomy of the learning map core"""


class LearningMapError(Exception):
    """Base class for every error raised by the learning map core"""


class ValidationError(LearningMapError):
    """Snapshot or entity violates a graph invariant"""


class ConflictError(LearningMapError):
    """Entity with the same id already exists"""


class NotFoundError(LearningMapError):
    """Referenced entity does not exist"""


class InvalidStateError(LearningMapError):
    """Operation is not allowed in the current state of the entity"""


class GenerationError(LearningMapError):
    """Content generator failed to produce an article"""


class LayoutError(LearningMapError):
    """Layout computation failed"""
