"""
Per-stage work sets for one dictionary group.

Every decision compares a page's current settings with the settings
remembered from its last build, one field group per stage (see
PageSettings.*_FIELDS), plus the recorded size of the chunk the stage
would produce.
"""

from dataclasses import dataclass, field
from typing import AbstractSet, Dict, Iterable, List, Set

from .djbz import DictionaryRegistry
from .errors import ConfigurationError
from .page_id import PageId
from .schemas import PageParams, Regenerate
from .settings import ParameterStore
from .source_images import is_chunk_cached


@dataclass
class StagePlan:
    dict_id: str
    group: List[PageId]
    to_export: Set[PageId] = field(default_factory=set)
    to_encode_raster: Set[PageId] = field(default_factory=set)
    raster_cached: Set[PageId] = field(default_factory=set)
    to_encode_text: Set[PageId] = field(default_factory=set)
    text_cached: Set[PageId] = field(default_factory=set)
    to_assemble: Set[PageId] = field(default_factory=set)
    to_postprocess: Set[PageId] = field(default_factory=set)

    def ordered(self, pages: AbstractSet[PageId]) -> List[PageId]:
        """Members of pages in group (project) order."""
        return [page for page in self.group if page in pages]

    @property
    def is_empty(self) -> bool:
        return not (self.to_export or self.to_encode_raster or self.to_encode_text
                    or self.to_assemble or self.to_postprocess)

    def summary(self) -> Dict[str, int]:
        return {
            "export": len(self.to_export),
            "encode_raster": len(self.to_encode_raster),
            "encode_text": len(self.to_encode_text),
            "assemble": len(self.to_assemble),
            "postprocess": len(self.to_postprocess),
        }


def _dictionary_unchanged(params: PageParams, dict_id: str, registry: DictionaryRegistry) -> bool:
    remembered = params.output_params
    if remembered is None or remembered.djbz_id != dict_id:
        return False
    if registry.is_sentinel(dict_id):
        return True
    dictionary = registry.get(dict_id)
    return remembered.djbz_revision == dictionary.revision and remembered.djbz_params == dictionary.params


def build_stage_plan(group: Iterable[PageId], dict_id: str, store: ParameterStore,
                     registry: DictionaryRegistry, dictionary_cached: bool,
                     forced_pages: AbstractSet[PageId] = frozenset()) -> StagePlan:
    """Partition a validated group into per-stage work sets.

    group must be in project order; the text encoder sees pages in that
    order.
    """
    plan = StagePlan(dict_id=dict_id, group=list(group))
    dictionary_reusable = dictionary_cached

    for page in plan.group:
        params = store.get(page)
        if params is None:
            raise ConfigurationError(f"Page {page} has no publishing parameters")
        info = params.source_images
        suggestion = info.export_suggestion
        if not suggestion.is_valid:
            raise ConfigurationError(f"Page {page} has no valid export suggestion")

        settings = params.settings
        remembered = params.output_params.settings if params.output_params is not None else None
        forced = page in forced_pages or bool(params.regenerate & Regenerate.PAGE)

        may_reuse_text = may_reuse_raster = False
        if remembered is not None and not forced:
            may_reuse_text = settings.matches_text_part(remembered)
            may_reuse_raster = settings.matches_raster_part(remembered)

        if suggestion.has_bw_layer and not _dictionary_unchanged(params, dict_id, registry):
            dictionary_reusable = False

        reuse_text = reuse_raster = False
        if suggestion.has_bw_layer:
            if may_reuse_text and dictionary_cached and is_chunk_cached(info.jb2):
                reuse_text = True
                plan.text_cached.add(page)
            else:
                plan.to_encode_text.add(page)

        if suggestion.has_color_layer:
            if may_reuse_raster and is_chunk_cached(info.bg44):
                reuse_raster = True
                plan.raster_cached.add(page)
            else:
                plan.to_encode_raster.add(page)

        if suggestion.is_layered:
            if not reuse_text or not reuse_raster:
                plan.to_export.add(page)
        elif suggestion.is_blank:
            # blank pages still get a placeholder entry in the text encoder script
            if params.is_djvu_cached() and not forced:
                plan.text_cached.add(page)
            else:
                plan.to_encode_text.add(page)

        if (remembered is None or forced or not settings.matches_assembly_part(remembered)
                or not params.is_djvu_cached()):
            plan.to_assemble.add(page)

        if remembered is None or forced or not settings.matches_postprocess_part(remembered):
            plan.to_postprocess.add(page)
            # djvused cannot clear a title, only a fresh page has none
            if remembered is not None and remembered.title and not settings.title:
                plan.to_assemble.add(page)

    # the text encoder rebuilds the dictionary for every member at once
    if not dictionary_reusable and not registry.is_sentinel(dict_id):
        plan.to_encode_text |= plan.text_cached
    if plan.to_encode_text and plan.text_cached:
        plan.to_encode_text |= plan.text_cached
        plan.to_assemble |= plan.text_cached
        plan.text_cached = set()

    plan.to_assemble |= plan.to_encode_raster | plan.to_encode_text

    for page in list(plan.to_encode_text):
        info = store.get(page).source_images
        if info.is_layered and not is_chunk_cached(info.foreground):
            plan.to_export.add(page)

    # a rebuilt page starts without title or rotation
    plan.to_postprocess |= plan.to_assemble
    return plan
