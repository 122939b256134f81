"""
Tests for per-stage work sets.

Key behaviors tested:
- A fully published group plans no work
- Text re-encoding always covers the whole dictionary
- Raster, assembly and postprocess work stays per page
- Clearing a title forces reassembly (djvused cannot remove it)
- Forced and never-built pages run every stage
"""

import pytest

from pipeline.publish.errors import ConfigurationError
from pipeline.publish.page_id import PageId
from pipeline.publish.plan import build_stage_plan
from pipeline.publish.schemas import DjbzParams


def plan_for(registry, store, pages, dictionary_cached=True, forced=frozenset()):
    dict_id = registry.dictionary_of(pages[0])
    group = [p for p in pages if registry.dictionary_of(p) == dict_id]
    if registry.is_sentinel(dict_id):
        group = [pages[0]]
    return build_stage_plan(group, dict_id, store, registry, dictionary_cached, forced)


def remember_title(store, page, title):
    """Pretend the page was last built with title."""
    params = store.get(page)
    params.settings = params.settings.model_copy(update={"title": title})
    params.output_params = params.output_params.model_copy(update={"settings": params.settings})
    store.set(page, params)


class TestNothingToDo:
    def test_published_group(self, published):
        layout, registry, store, suggestions, pages = published([(True, False), (True, True), (True, False)])
        plan = plan_for(registry, store, pages)

        assert plan.is_empty
        assert plan.text_cached == set(pages)
        assert plan.raster_cached == {pages[1]}

    def test_summary_counts(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 2)
        assert plan_for(registry, store, pages).summary() == {
            "export": 0, "encode_raster": 0, "encode_text": 0, "assemble": 0, "postprocess": 0,
        }


class TestTextEncoding:
    """The shared dictionary is rebuilt for all members at once."""

    def test_one_text_change_reencodes_group(self, published):
        layout, registry, store, suggestions, pages = published([(True, False), (True, True), (True, False)])
        store.update_settings(pages[2], smooth=True)

        plan = plan_for(registry, store, pages)

        assert plan.to_encode_text == set(pages)
        assert plan.text_cached == set()
        assert plan.to_assemble == set(pages)
        assert plan.to_encode_raster == set()
        assert plan.raster_cached == {pages[1]}

    def test_dictionary_not_cached(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 3)
        plan = plan_for(registry, store, pages, dictionary_cached=False)
        assert plan.to_encode_text == set(pages)

    def test_dictionary_params_changed(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 3)
        registry.set_params(registry.dictionary_of(pages[0]), DjbzParams(use_averaging=True))

        plan = plan_for(registry, store, pages)

        assert plan.to_encode_text == set(pages)
        assert plan.to_assemble == set(pages)

    def test_missing_jb2_chunk(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 2)
        layout.jb2_chunk(pages[1]).write_text("truncated")

        plan = plan_for(registry, store, pages)

        assert plan.to_encode_text == set(pages)

    def test_layered_page_without_foreground_is_exported(self, published):
        layout, registry, store, suggestions, pages = published([(True, True), (True, False)])
        store.update_settings(pages[1], clean=True)

        plan = plan_for(registry, store, pages)

        assert pages[0] in plan.to_encode_text
        assert plan.to_export == {pages[0]}

    def test_encoder_order_follows_group(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 4)
        store.update_settings(pages[0], erosion=True)
        plan = plan_for(registry, store, pages)
        assert plan.ordered(plan.to_encode_text) == pages


class TestPerPageStages:
    def test_raster_change_stays_local(self, published):
        layout, registry, store, suggestions, pages = published([(True, True), (True, False), (True, True)])
        store.update_settings(pages[0], bsf=2)

        plan = plan_for(registry, store, pages)

        assert plan.to_encode_raster == {pages[0]}
        assert plan.to_export == {pages[0]}
        assert plan.to_encode_text == set()
        assert plan.to_assemble == {pages[0]}
        assert plan.to_postprocess == {pages[0]}

    def test_foreground_colour_needs_assembly_only(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 2)
        store.update_settings(pages[1], fg_color="#202020")

        plan = plan_for(registry, store, pages)

        assert plan.to_assemble == {pages[1]}
        assert plan.to_encode_text == set()
        assert plan.to_encode_raster == set()

    def test_rotation_needs_postprocess_only(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 2)
        store.update_settings(pages[0], rotation=1)

        plan = plan_for(registry, store, pages)

        assert plan.to_postprocess == {pages[0]}
        assert plan.to_assemble == set()

    def test_missing_page_document_is_reassembled(self, published):
        layout, registry, store, suggestions, pages = published([(False, True)])
        layout.djvu_page(pages[0]).unlink()

        plan = plan_for(registry, store, pages)

        assert plan.to_assemble == {pages[0]}
        assert plan.to_postprocess == {pages[0]}
        assert plan.to_encode_raster == set()


class TestTitles:
    """Titles can be set in place but not removed."""

    def test_setting_title_is_postprocess_only(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 2)
        store.update_settings(pages[0], title="Contents")

        plan = plan_for(registry, store, pages)

        assert plan.to_postprocess == {pages[0]}
        assert plan.to_assemble == set()

    def test_clearing_title_forces_assembly(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 2)
        remember_title(store, pages[0], "X")
        store.update_settings(pages[0], title="")

        plan = plan_for(registry, store, pages)

        assert plan.to_assemble == {pages[0]}
        assert plan.to_postprocess == {pages[0]}
        # the encoded chunks are still good
        assert plan.to_encode_text == set()
        assert plan.to_encode_raster == set()

    def test_changing_title_is_postprocess_only(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)])
        remember_title(store, pages[0], "X")
        store.update_settings(pages[0], title="Y")

        plan = plan_for(registry, store, pages)

        assert plan.to_assemble == set()
        assert plan.to_postprocess == {pages[0]}


class TestForcedAndNew:
    def test_forced_page_runs_everything(self, published):
        layout, registry, store, suggestions, pages = published([(True, True), (True, False)])
        plan = plan_for(registry, store, pages, forced=frozenset({pages[0]}))

        assert plan.to_export == {pages[0]}
        assert plan.to_encode_raster == {pages[0]}
        assert plan.to_encode_text == set(pages)
        assert plan.to_assemble == set(pages)
        assert plan.to_postprocess == set(pages)

    def test_never_built_page(self, published):
        layout, registry, store, suggestions, pages = published([(False, True)])
        params = store.get(pages[0])
        params.output_params = None
        store.set(pages[0], params)

        plan = plan_for(registry, store, pages)

        assert plan.to_encode_raster == {pages[0]}
        assert plan.to_assemble == {pages[0]}
        assert plan.to_postprocess == {pages[0]}

    def test_blank_page_is_encoded_as_placeholder(self, published):
        layout, registry, store, suggestions, pages = published([(False, False)])
        layout.djvu_page(pages[0]).unlink()

        plan = plan_for(registry, store, pages)

        assert plan.to_encode_text == {pages[0]}
        assert plan.to_encode_raster == set()


class TestErrors:
    def test_missing_params(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)])
        stranger = PageId("/elsewhere/page.png")
        with pytest.raises(ConfigurationError):
            build_stage_plan([stranger], registry.dictionary_of(pages[0]), store, registry, True)
