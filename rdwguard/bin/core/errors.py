"""
Error types for RDW Guard
Runtime breakage of the pose tree is never raised: it is reported as a DriftEvent.
These exceptions cover construction-time layout problems and collaborator faults.
"""


class RDWGuardError(Exception):
    """Base class for RDW Guard errors"""


class LayoutError(RDWGuardError):
    """Avatar layout table or tree operation is structurally invalid"""


class CollaboratorError(RDWGuardError):
    """A call into the redirection collaborator failed or returned garbage"""

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        message = f"{operation} failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
