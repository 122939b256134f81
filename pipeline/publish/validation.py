from .djbz import DictionaryRegistry, SENTINEL_ID
from .errors import ConfigurationError
from .layout import OutputLayout
from .page_id import PageId
from .schemas import Regenerate
from .settings import ParameterStore
from .source_images import ExportSuggestions, compute_source_images


class ParamsValidator:
    """
    Brings the stored parameters of a page group into a usable state.

    Every fix is written to the store immediately. Stage planning relies on
    each group member having params, a dictionary and fresh source image
    info, so this runs before any plan is built.
    """

    def __init__(self, registry: DictionaryRegistry, store: ParameterStore, layout: OutputLayout,
                 suggestions: ExportSuggestions, pages_per_dictionary: int):
        self.registry = registry
        self.store = store
        self.layout = layout
        self.suggestions = suggestions
        self.pages_per_dictionary = pages_per_dictionary

    def validate(self, page: PageId) -> None:
        suggestion = self.suggestions.get(page)
        if suggestion is None or not suggestion.is_valid:
            raise ConfigurationError(f"No valid export suggestion for page {page}")

        params = self.store.get(page)
        if params is None:
            params = self.store.default_params()
            self.store.set(page, params)

        if not self.registry.dictionary_of(page):
            if suggestion.has_bw_layer:
                params.djbz_id = self.registry.assign_new_page(page, self.pages_per_dictionary)
            else:
                self.registry.assign(page, SENTINEL_ID)
                params.djbz_id = SENTINEL_ID
            self.store.set(page, params)

        fresh = compute_source_images(page, self.layout, self.suggestions)
        if params.source_images.is_valid and params.source_images.output != fresh.output:
            # the processed image itself changed, none of its chunks can be reused
            params.force_reprocess = int(params.regenerate | Regenerate.PAGE)
            self.store.set(page, params)
        if not params.source_images.is_valid or params.source_images != fresh:
            params.source_images = fresh
            self.store.set(page, params)

    def validate_group(self, subject: PageId) -> None:
        """Validate the other members of subject's dictionary."""
        for page in sorted(self.registry.members_of_same_dictionary(subject)):
            if page != subject:
                self.validate(page)

    def validate_all(self, subject: PageId) -> None:
        self.validate(subject)
        self.validate_group(subject)
