"""
Decides whether a page, and the shared dictionary it belongs to, must be
rebuilt.

The checks compare what was remembered after the last successful build
against what would be used now. Checking a page consumes its
force-reprocess flag; the consumed pages are collected in forced_pages so
a failed run can give the flags back.
"""

from typing import Optional, Set, Tuple

from .djbz import DictionaryRegistry
from .layout import OutputLayout
from .page_id import PageId
from .settings import ParameterStore
from .source_images import ExportSuggestions, compute_source_images


class StalenessAnalyzer:
    def __init__(self, registry: DictionaryRegistry, store: ParameterStore,
                 layout: OutputLayout, suggestions: ExportSuggestions):
        self.registry = registry
        self.store = store
        self.layout = layout
        self.suggestions = suggestions
        self.forced_pages: Set[PageId] = set()

    def needs_page_reprocess(self, page: PageId) -> bool:
        params = self.store.get(page)
        if params is None:
            return True

        if self.store.consume_force_reprocess(page):
            self.forced_pages.add(page)
            return True

        if not params.djbz_id or not self.registry.has_dictionary(params.djbz_id):
            return True

        current_images = compute_source_images(page, self.layout, self.suggestions)
        if current_images != params.source_images:
            return True

        if params.output_params is None:
            return True

        dictionary = self.registry.get(params.djbz_id)
        expected = params.current_output_params(params.djbz_id, dictionary.revision, dictionary.params)
        if not params.output_params.matches(expected):
            return True

        return not params.is_djvu_cached()

    def needs_dictionary_reprocess(self, dict_id: str, subject: Optional[PageId] = None) -> bool:
        """Check the other members of dict_id; the subject page was already checked."""
        if self.registry.is_sentinel(dict_id):
            return False
        for page in sorted(self.registry.members_of(dict_id)):
            if page == subject:
                continue
            if self.needs_page_reprocess(page):
                return True
        return False

    def needs_reprocess(self, page: PageId) -> Tuple[bool, bool]:
        """Return (needs_reprocess, dictionary_cached) for page."""
        params = self.store.get(page)
        dict_id = params.djbz_id if params is not None else None
        if not dict_id:
            dict_id = self.registry.dictionary_of(page)
        if not dict_id or not self.registry.has_dictionary(dict_id):
            return True, False

        dictionary_cached = self.registry.is_output_cached(dict_id)
        if not dictionary_cached:
            return True, False

        if self.needs_page_reprocess(page):
            return True, True
        return self.needs_dictionary_reprocess(dict_id, subject=page), True
