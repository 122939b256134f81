from pathlib import Path
from typing import List, Optional


class PublishError(Exception):
    """Base exception for the publishing stage."""
    pass


class ConfigurationError(PublishError):
    """Page parameters or suggestions are missing where a run needs them."""
    pass


class UnknownDictionaryError(PublishError, KeyError):
    """A dictionary id that the registry does not know."""

    def __init__(self, dict_id: str):
        super().__init__(dict_id)
        self.dict_id = dict_id

    def __str__(self) -> str:
        return f"Unknown shared dictionary: {self.dict_id!r}"


class ExternalToolFailure(PublishError):
    """An encoder process could not be started or exited with an error."""

    def __init__(self, executable: str, args: List[str], returncode: Optional[int], message: str = ""):
        self.executable = executable
        self.args_list = list(args)
        self.returncode = returncode
        detail = message or f"exit code {returncode}"
        super().__init__(f"{executable} failed: {detail}")


class Cancelled(PublishError):
    """The run was cancelled on request."""
    pass


class FilesystemInconsistency(PublishError):
    """An artifact is missing although the tool producing it reported success."""

    def __init__(self, path, message: str = ""):
        self.path = Path(path)
        super().__init__(message or f"Expected output is missing: {self.path}")
