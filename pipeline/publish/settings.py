import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, TYPE_CHECKING

from pydantic import BaseModel

from .page_id import PageId
from .schemas import FileStamp, PageParams, PageSettings, Regenerate

if TYPE_CHECKING:
    from .djbz import DictionaryRegistry


class BundledDocument(BaseModel):
    """Where the multi-page document was last written and what it looked like."""
    filename: str = ""
    size: int = 0
    last_changed: Optional[datetime] = None

    def stamp(self) -> FileStamp:
        return FileStamp(path=self.filename, size=self.size, last_changed=self.last_changed)

    def needs_update(self) -> bool:
        return bool(self.filename) and not self.stamp().matches_disk()

    def refresh(self) -> None:
        stamp = FileStamp.from_disk(self.filename)
        self.size = stamp.size
        self.last_changed = stamp.last_changed

    def reset(self) -> None:
        self.size = 0
        self.last_changed = None


class ParameterStore:
    """Per-page publishing parameters.

    Reads hand out copies; callers change a copy and write it back with
    set(), so a half-edited record is never visible to other threads.
    """

    def __init__(self, page_defaults: Optional[PageSettings] = None):
        self._lock = threading.RLock()
        self._params: Dict[PageId, PageParams] = {}
        self.page_defaults = page_defaults or PageSettings()
        self.bundled = BundledDocument()
        self.metadata: Dict[str, str] = {}

    def default_params(self) -> PageParams:
        return PageParams(settings=self.page_defaults)

    def get(self, page: PageId) -> Optional[PageParams]:
        with self._lock:
            params = self._params.get(page)
            return params.model_copy() if params is not None else None

    def set(self, page: PageId, params: PageParams) -> None:
        with self._lock:
            self._params[page] = params.model_copy()

    def contains(self, page: PageId) -> bool:
        with self._lock:
            return page in self._params

    def remove(self, page: PageId) -> None:
        with self._lock:
            self._params.pop(page, None)

    def pages(self) -> List[PageId]:
        with self._lock:
            return sorted(self._params)

    def clear(self) -> None:
        with self._lock:
            self._params.clear()
            self.bundled = BundledDocument()
            self.metadata = {}

    def snapshot(self) -> "ParameterStore":
        """Independent copy for the duration of one run."""
        with self._lock:
            clone = ParameterStore(self.page_defaults)
            clone._params = {page: params.model_copy() for page, params in self._params.items()}
            clone.bundled = self.bundled.model_copy()
            clone.metadata = dict(self.metadata)
            return clone

    def update_settings(self, page: PageId, **changes) -> PageParams:
        """Edit a page's output settings, creating default params if needed."""
        with self._lock:
            params = self.get(page) or self.default_params()
            params.settings = PageSettings.model_validate({**params.settings.model_dump(), **changes})
            self.set(page, params)
            return params

    def invalidate(self, page: PageId) -> None:
        with self._lock:
            params = self.get(page)
            if params is not None:
                params.force_reprocess = int(Regenerate.ALL)
                self.set(page, params)

    def set_force_reprocess(self, page: PageId, flags: Regenerate) -> None:
        with self._lock:
            params = self.get(page)
            if params is not None:
                params.force_reprocess = int(flags)
                self.set(page, params)

    def consume_force_reprocess(self, page: PageId) -> bool:
        """Clear the page bit of the force flags; True if it was set."""
        with self._lock:
            params = self._params.get(page)
            if params is None or not (params.regenerate & Regenerate.PAGE):
                return False
            params.force_reprocess = int(params.regenerate & ~Regenerate.PAGE)
            return True

    def restore_force_reprocess(self, pages: Iterable[PageId]) -> None:
        with self._lock:
            for page in pages:
                params = self._params.get(page)
                if params is not None:
                    params.force_reprocess = int(params.regenerate | Regenerate.PAGE)

    def djvu_filenames(self, pages: Iterable[PageId]) -> List[str]:
        names = []
        for page in pages:
            params = self.get(page)
            if params is None or params.djvu is None:
                raise KeyError(f"Page has no DjVu output: {page}")
            names.append(params.djvu.path)
        return names

    def check_pages_ready(self, pages: Iterable[PageId], registry: "DictionaryRegistry") -> bool:
        """True when every page has an up to date DjVu file on disk."""
        for page in pages:
            params = self.get(page)
            if params is None or not params.djbz_id or params.output_params is None:
                return False
            if not registry.has_dictionary(params.djbz_id):
                return False
            dictionary = registry.get(params.djbz_id)
            expected = params.current_output_params(params.djbz_id, dictionary.revision, dictionary.params)
            if not params.output_params.matches(expected):
                return False
            if not params.is_djvu_cached():
                return False
        return True
