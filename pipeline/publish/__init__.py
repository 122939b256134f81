"""
Incremental DjVu publishing.

Pages are grouped into shared dictionaries; a page is rebuilt only when
something it depends on changed, and then together with every page of
its dictionary. Entry point is PublishTask (task.py), which needs infra
and is therefore not re-exported here.
"""

from .errors import (
    Cancelled,
    ConfigurationError,
    ExternalToolFailure,
    FilesystemInconsistency,
    PublishError,
    UnknownDictionaryError,
)
from .page_id import PageId, SubPage
from .schemas import (
    ClassifierType,
    DjbzParams,
    ExportSuggestion,
    PageParams,
    PageSettings,
    Regenerate,
)
from .djbz import DictionaryKind, DictionaryRegistry, SENTINEL_ID
from .settings import ParameterStore

__all__ = [
    "Cancelled",
    "ConfigurationError",
    "ExternalToolFailure",
    "FilesystemInconsistency",
    "PublishError",
    "UnknownDictionaryError",

    "PageId",
    "SubPage",

    "ClassifierType",
    "DjbzParams",
    "ExportSuggestion",
    "PageParams",
    "PageSettings",
    "Regenerate",

    "DictionaryKind",
    "DictionaryRegistry",
    "SENTINEL_ID",
    "ParameterStore",
]
