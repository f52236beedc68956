"""
Error types raised by the clinical forms core.

The taxonomy is deliberately narrow. Each error subclasses the builtin
family a caller would already expect (ValueError, LookupError,
IndexError) so generic handlers keep working.
"""

from typing import Iterable, List


class FormStateError(Exception):
    """Base class for all caseforms errors"""


class UnknownSectionPath(FormStateError, LookupError):
    """Path does not address a node of the expected kind in the document"""

    def __init__(self, path: str, reason: str = "does not exist"):
        self.path = path
        super().__init__(f"Section path '{path}' {reason}")


class PatchRejected(FormStateError, ValueError):
    """
    Partial update failed schema validation.

    Attributes:
        path: Addressed node
        errors: One message per offending key
    """

    def __init__(self, path: str, errors: Iterable[str]):
        self.path = path
        self.errors: List[str] = list(errors)
        message = f"Patch to '{path}' rejected:\n  - " + "\n  - ".join(self.errors)
        super().__init__(message)


class RecordNotFound(FormStateError, IndexError):
    """Index is outside a repeating sub-record list"""

    def __init__(self, list_path: str, index: int, size: int):
        self.list_path = list_path
        self.index = index
        self.size = size
        super().__init__(
            f"Record {index} does not exist in '{list_path}' ({size} records)"
        )


class DocumentSubmittedError(FormStateError):
    """Mutation attempted on a document that has already been submitted"""

    def __init__(self, form_id: str):
        self.form_id = form_id
        super().__init__(f"Form {form_id} has been submitted and can no longer be edited")


class SubmissionBlocked(FormStateError):
    """
    Submission checklist failed.

    Recoverable: the user fills in the listed fields and tries again.
    """

    def __init__(self, missing_fields: Iterable[str]):
        self.missing_fields: List[str] = list(missing_fields)
        super().__init__(
            "Please complete the following required fields: "
            + ", ".join(self.missing_fields)
        )


class InvalidTimeInput(FormStateError, ValueError):
    """Incident date/time could not be parsed into a timestamp"""

    def __init__(self, value, reason: str = "could not be parsed"):
        self.value = value
        super().__init__(f"Invalid incident time {value!r}: {reason}")
