"""
Shared dictionary (djbz) registry.

Owns both directions of the page <-> dictionary mapping behind one lock.
Only paired operations are exposed (assign, move, remove), so a page is
always a member of exactly the dictionary it maps to.
"""

import copy
import logging
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, TYPE_CHECKING

from .errors import UnknownDictionaryError
from .page_id import PageId
from .schemas import DjbzParams, ExportSuggestion, FileStamp, next_revision

if TYPE_CHECKING:
    from .settings import ParameterStore
    from .source_images import ExportSuggestions

logger = logging.getLogger(__name__)

SENTINEL_ID = "[none]"


class DictionaryKind(str, Enum):
    AUTO_FILL = "auto"   # new pages may be added automatically
    LOCKED = "locked"    # only the user adds pages
    NONE = "no_dict"     # virtual dictionary of pages without a bitonal layer


class DjbzDict:
    def __init__(self, kind: DictionaryKind = DictionaryKind.AUTO_FILL, max_pages: int = 20,
                 params: Optional[DjbzParams] = None, revision: Optional[datetime] = None):
        self.kind = kind
        self.max_pages = max_pages
        self.params = params or DjbzParams()
        self.revision = revision or next_revision(None)
        self.pages: Set[PageId] = set()
        self.output = FileStamp(path="")

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def bump_revision(self) -> None:
        # sentinel pages share no symbols, membership changes must not make them stale
        if self.kind == DictionaryKind.NONE:
            return
        self.revision = next_revision(self.revision)

    def add_page(self, page: PageId, no_revision_bump: bool = False) -> None:
        self.pages.add(page)
        if len(self.pages) > self.max_pages:
            self.max_pages = len(self.pages)
        if not no_revision_bump:
            self.bump_revision()

    def remove_page(self, page: PageId, no_revision_bump: bool = False) -> None:
        if page in self.pages:
            self.pages.discard(page)
            if not no_revision_bump:
                self.bump_revision()

    def set_params(self, params: DjbzParams, no_revision_bump: bool = False) -> None:
        if params != self.params:
            self.params = params
            if not no_revision_bump:
                self.bump_revision()

    def is_output_cached(self) -> bool:
        return self.output.matches_disk()

    def __repr__(self) -> str:
        return f"DjbzDict(kind={self.kind.value}, pages={self.page_count}, max={self.max_pages})"


class DictionaryRegistry:
    def __init__(self, default_params: Optional[DjbzParams] = None):
        self._lock = threading.RLock()
        self.default_params = default_params or DjbzParams()
        self._dictionaries: Dict[str, DjbzDict] = {}
        self._page_to_dict: Dict[PageId, str] = {}
        self._id_counter = 0
        self._ensure_sentinel()

    def _ensure_sentinel(self) -> None:
        sentinel = self._dictionaries.get(SENTINEL_ID)
        if sentinel is None:
            sentinel = DjbzDict(kind=DictionaryKind.NONE, params=self.default_params)
            self._dictionaries[SENTINEL_ID] = sentinel
        sentinel.kind = DictionaryKind.NONE

    # ---- queries ----------------------------------------------------------

    @staticmethod
    def is_sentinel(dict_id: str) -> bool:
        return dict_id == SENTINEL_ID

    def has_dictionary(self, dict_id: str) -> bool:
        with self._lock:
            return dict_id in self._dictionaries

    def get(self, dict_id: str) -> DjbzDict:
        with self._lock:
            try:
                return self._dictionaries[dict_id]
            except KeyError:
                raise UnknownDictionaryError(dict_id) from None

    def dictionary_of(self, page: PageId) -> Optional[str]:
        with self._lock:
            return self._page_to_dict.get(page)

    def members_of(self, dict_id: str) -> FrozenSet[PageId]:
        with self._lock:
            return frozenset(self.get(dict_id).pages)

    def members_of_same_dictionary(self, page: PageId) -> FrozenSet[PageId]:
        """Pages built together with page; a sentinel page stands alone."""
        with self._lock:
            dict_id = self._page_to_dict.get(page)
            if dict_id is None:
                raise KeyError(f"Page has no dictionary: {page}")
            if self.is_sentinel(dict_id):
                return frozenset({page})
            return self.members_of(dict_id)

    def list_all(self) -> List[str]:
        with self._lock:
            ids = sorted(self._dictionaries)
            ids.remove(SENTINEL_ID)
            return [SENTINEL_ID] + ids

    def sizes(self) -> Dict[str, int]:
        with self._lock:
            return {dict_id: self._dictionaries[dict_id].page_count for dict_id in self.list_all()}

    def is_output_cached(self, dict_id: Optional[str]) -> bool:
        if not dict_id:
            return False
        if self.is_sentinel(dict_id):
            return True
        with self._lock:
            return self.get(dict_id).is_output_cached()

    def requires_text_dictionary(self, page: PageId) -> bool:
        dict_id = self.dictionary_of(page)
        if dict_id is None:
            raise KeyError(f"Page has no dictionary: {page}")
        return not self.is_sentinel(dict_id)

    # ---- mutations --------------------------------------------------------

    def _next_id(self) -> str:
        while True:
            self._id_counter += 1
            dict_id = f"{self._id_counter:04d}"
            if dict_id not in self._dictionaries:
                return dict_id

    def create_dictionary(self, kind: DictionaryKind = DictionaryKind.AUTO_FILL,
                          max_pages: int = 20, params: Optional[DjbzParams] = None,
                          dict_id: Optional[str] = None) -> str:
        with self._lock:
            if dict_id is None:
                dict_id = self._next_id()
            elif dict_id in self._dictionaries:
                raise ValueError(f"Dictionary already exists: {dict_id}")
            self._dictionaries[dict_id] = DjbzDict(
                kind=kind, max_pages=max_pages, params=params or self.default_params
            )
            return dict_id

    def put(self, dict_id: str, dictionary: DjbzDict) -> None:
        """Install a dictionary record as loaded from a project file."""
        with self._lock:
            if self.is_sentinel(dict_id):
                dictionary.kind = DictionaryKind.NONE
            self._dictionaries[dict_id] = dictionary
            for page in dictionary.pages:
                self._page_to_dict[page] = dict_id

    def assign_new_page(self, page: PageId, pages_per_dictionary: int) -> str:
        """Pick a dictionary for a page that has none.

        The first auto-fill dictionary with room wins, in id order. That
        is not best-fit, but which pages end up sharing a dictionary is
        visible in the output, so the order must stay stable.
        """
        with self._lock:
            if pages_per_dictionary < 2:
                if self._page_to_dict.get(page) != SENTINEL_ID:
                    self.remove(page)
                    self._dictionaries[SENTINEL_ID].add_page(page)
                    self._page_to_dict[page] = SENTINEL_ID
                return SENTINEL_ID

            current = self._page_to_dict.get(page)
            if current is not None:
                return current

            chosen = None
            for dict_id in sorted(self._dictionaries):
                dictionary = self._dictionaries[dict_id]
                if dictionary.kind == DictionaryKind.AUTO_FILL and dictionary.page_count < dictionary.max_pages:
                    chosen = dict_id
                    break

            if chosen is None:
                chosen = self.create_dictionary(max_pages=pages_per_dictionary)

            self._dictionaries[chosen].add_page(page)
            self._page_to_dict[page] = chosen
            return chosen

    def assign(self, page: PageId, dict_id: str, no_revision_bump: bool = False,
               create_missing: bool = False) -> None:
        """Put a page that has no dictionary yet into dict_id."""
        with self._lock:
            if self._page_to_dict.get(page) == dict_id:
                return
            if dict_id not in self._dictionaries:
                if not create_missing:
                    raise UnknownDictionaryError(dict_id)
                logger.warning("Page %s refers to missing dictionary %s, recreating it", page, dict_id)
                self.create_dictionary(params=self.default_params, dict_id=dict_id)
            if page in self._page_to_dict:
                self.remove(page, no_revision_bump=no_revision_bump)
            self._dictionaries[dict_id].add_page(page, no_revision_bump=no_revision_bump)
            self._page_to_dict[page] = dict_id

    def remove(self, page: PageId, no_revision_bump: bool = False) -> None:
        with self._lock:
            dict_id = self._page_to_dict.pop(page, None)
            if dict_id is not None:
                self._dictionaries[dict_id].remove_page(page, no_revision_bump=no_revision_bump)

    def move(self, page: PageId, new_id: str, no_revision_bump: bool = False) -> None:
        """Move a page between dictionaries, bumping both revisions.

        The sentinel's revision never changes, so a move into or out of it
        bumps only the real dictionary.
        """
        with self._lock:
            if new_id not in self._dictionaries:
                raise UnknownDictionaryError(new_id)
            if self._page_to_dict.get(page) == new_id:
                return
            self.remove(page, no_revision_bump=no_revision_bump)
            self._dictionaries[new_id].add_page(page, no_revision_bump=no_revision_bump)
            self._page_to_dict[page] = new_id

    def set_params(self, dict_id: str, params: DjbzParams, no_revision_bump: bool = False) -> None:
        with self._lock:
            self.get(dict_id).set_params(params, no_revision_bump=no_revision_bump)

    def set_kind(self, dict_id: str, kind: DictionaryKind) -> None:
        with self._lock:
            if self.is_sentinel(dict_id):
                raise ValueError("The no-dictionary entry cannot change kind")
            if kind == DictionaryKind.NONE:
                raise ValueError("Only the no-dictionary entry may have kind 'no_dict'")
            self.get(dict_id).kind = kind

    def set_max_pages(self, dict_id: str, max_pages: int) -> None:
        with self._lock:
            self.get(dict_id).max_pages = max_pages

    def update_output(self, dict_id: str, path: Path) -> FileStamp:
        """Record the dictionary file as it is on disk now."""
        with self._lock:
            stamp = FileStamp.from_disk(path)
            self.get(dict_id).output = stamp
            return stamp

    def reset_non_locked(self) -> None:
        """Forget every dictionary except locked ones and their pages."""
        with self._lock:
            locked = {
                dict_id: dictionary
                for dict_id, dictionary in self._dictionaries.items()
                if dictionary.kind == DictionaryKind.LOCKED
            }
            self._dictionaries = locked
            self._page_to_dict = {
                page: dict_id for dict_id, dictionary in locked.items() for page in dictionary.pages
            }
            self._id_counter = 0
            self._ensure_sentinel()

    def auto_assign(self, pages: Iterable[PageId], suggestions: "ExportSuggestions",
                    store: "ParameterStore", pages_per_dictionary: int) -> int:
        """Make every page's dictionary agree with whether it has a bitonal layer.

        Pages without a bitonal layer belong to the sentinel, the others to
        a real dictionary. Returns how many pages were (re)assigned; a
        second call with the same inputs returns 0.
        """
        changed = 0
        sharing = pages_per_dictionary >= 2
        with self._lock:
            for page in pages:
                params = store.get(page)
                suggestion = suggestions.get(page, ExportSuggestion())

                need_new = params is None or not params.djbz_id
                if not need_new:
                    mismatch = (
                        (sharing and suggestion.has_bw_layer and self.is_sentinel(params.djbz_id))
                        or (not suggestion.has_bw_layer and not self.is_sentinel(params.djbz_id))
                        or self._page_to_dict.get(page) != params.djbz_id
                    )
                    if mismatch:
                        self.remove(page)
                        need_new = True

                if not need_new:
                    continue

                if suggestion.has_bw_layer:
                    new_id = self.assign_new_page(page, pages_per_dictionary)
                else:
                    new_id = SENTINEL_ID
                    self.assign(page, SENTINEL_ID)

                if params is None:
                    params = store.default_params()
                params.djbz_id = new_id
                store.set(page, params)
                changed += 1
        return changed

    def reassign_all(self, pages: Iterable[PageId], suggestions: "ExportSuggestions",
                     store: "ParameterStore", pages_per_dictionary: int) -> int:
        """Rebuild every non-locked dictionary from scratch in project order."""
        with self._lock:
            self.reset_non_locked()
            return self.auto_assign(pages, suggestions, store, pages_per_dictionary)

    def snapshot(self) -> "DictionaryRegistry":
        """Independent copy for the duration of one run."""
        with self._lock:
            return copy.deepcopy(self)

    def __deepcopy__(self, memo):
        clone = DictionaryRegistry.__new__(DictionaryRegistry)
        clone._lock = threading.RLock()
        clone.default_params = self.default_params
        clone._dictionaries = copy.deepcopy(self._dictionaries, memo)
        clone._page_to_dict = dict(self._page_to_dict)
        clone._id_counter = self._id_counter
        return clone
