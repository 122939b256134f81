"""
Tests for staleness decisions.

Key behaviors tested:
- A page without remembered output params always needs a rebuild
- A fully published dictionary reports (False, True)
- Any change to settings, source files, dictionary state or the page
  document makes the page stale
- Force flags are consumed once and collected for restoring
- A stale sibling makes the whole dictionary stale
"""

from pipeline.publish.djbz import SENTINEL_ID
from pipeline.publish.schemas import DjbzParams, Regenerate
from pipeline.publish.staleness import StalenessAnalyzer


def analyzer_for(layout, registry, store, suggestions):
    return StalenessAnalyzer(registry, store, layout, suggestions)


class TestNeedsPageReprocess:
    """Single page checks."""

    def test_no_output_params_means_stale(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 3)
        for page in pages:
            params = store.get(page)
            params.output_params = None
            store.set(page, params)

        analyzer = analyzer_for(layout, registry, store, suggestions)
        assert all(analyzer.needs_page_reprocess(page) for page in pages)

    def test_unknown_page(self, published, pages):
        layout, registry, store, suggestions, _ = published([(True, False)])
        assert analyzer_for(layout, registry, store, suggestions).needs_page_reprocess(pages[0])

    def test_published_page_is_fresh(self, published):
        layout, registry, store, suggestions, pages = published([(True, True)])
        assert not analyzer_for(layout, registry, store, suggestions).needs_page_reprocess(pages[0])

    def test_settings_change(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)])
        store.update_settings(pages[0], title="Preface")
        assert analyzer_for(layout, registry, store, suggestions).needs_page_reprocess(pages[0])

    def test_source_image_change(self, published, touch_bigger):
        layout, registry, store, suggestions, pages = published([(True, False)])
        touch_bigger(layout.output_image(pages[0]))
        assert analyzer_for(layout, registry, store, suggestions).needs_page_reprocess(pages[0])

    def test_missing_chunk(self, published):
        layout, registry, store, suggestions, pages = published([(False, True)])
        layout.bg44_chunk(pages[0]).unlink()
        assert analyzer_for(layout, registry, store, suggestions).needs_page_reprocess(pages[0])

    def test_page_document_changed(self, published, touch_bigger):
        layout, registry, store, suggestions, pages = published([(True, False)])
        touch_bigger(layout.djvu_page(pages[0]))
        assert analyzer_for(layout, registry, store, suggestions).needs_page_reprocess(pages[0])

    def test_dictionary_revision_change(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)] * 2)
        registry.set_params(store.get(pages[0]).djbz_id, DjbzParams(aggression=180))
        assert analyzer_for(layout, registry, store, suggestions).needs_page_reprocess(pages[0])

    def test_suggestion_change(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)])
        suggestions[pages[0]] = suggestions[pages[0]].model_copy(update={"dpi": 600})
        assert analyzer_for(layout, registry, store, suggestions).needs_page_reprocess(pages[0])


class TestForceReprocess:
    """Force flags are consumed by the check."""

    def test_flag_consumed_once(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)])
        store.invalidate(pages[0])
        analyzer = analyzer_for(layout, registry, store, suggestions)

        assert analyzer.needs_page_reprocess(pages[0])
        assert pages[0] in analyzer.forced_pages
        assert not store.get(pages[0]).regenerate & Regenerate.PAGE
        # the thumbnail bit is left alone
        assert store.get(pages[0]).regenerate & Regenerate.THUMBNAIL

        assert not analyzer.needs_page_reprocess(pages[0])

    def test_restore(self, published):
        layout, registry, store, suggestions, pages = published([(True, False)])
        store.invalidate(pages[0])
        analyzer = analyzer_for(layout, registry, store, suggestions)
        analyzer.needs_page_reprocess(pages[0])

        store.restore_force_reprocess(analyzer.forced_pages)

        assert store.get(pages[0]).regenerate == Regenerate.ALL


class TestNeedsReprocess:
    """Page plus dictionary decision."""

    def test_cache_hit(self, published):
        """Everything matches: (False, True)."""
        layout, registry, store, suggestions, pages = published([(True, False), (True, True), (True, False)])
        analyzer = analyzer_for(layout, registry, store, suggestions)
        assert analyzer.needs_reprocess(pages[1]) == (False, True)

    def test_sentinel_page_cache_hit(self, published):
        layout, registry, store, suggestions, pages = published([(False, True)])
        assert store.get(pages[0]).djbz_id == SENTINEL_ID
        assert analyzer_for(layout, registry, store, suggestions).needs_reprocess(pages[0]) == (False, True)

    def test_dictionary_file_changed(self, published, touch_bigger):
        layout, registry, store, suggestions, pages = published([(True, False)] * 2)
        dict_id = store.get(pages[0]).djbz_id
        touch_bigger(layout.dictionary_file(dict_id, "djbz"))

        assert analyzer_for(layout, registry, store, suggestions).needs_reprocess(pages[0]) == (True, False)

    def test_stale_sibling(self, published):
        """A changed page makes its dictionary partners stale too."""
        layout, registry, store, suggestions, pages = published([(True, False)] * 3)
        store.update_settings(pages[2], clean=True)

        analyzer = analyzer_for(layout, registry, store, suggestions)
        assert analyzer.needs_reprocess(pages[0]) == (True, True)

    def test_sentinel_ignores_other_sentinel_pages(self, published):
        layout, registry, store, suggestions, pages = published([(False, True), (False, True)])
        store.update_settings(pages[1], dpi=300)

        analyzer = analyzer_for(layout, registry, store, suggestions)
        assert analyzer.needs_reprocess(pages[0]) == (False, True)
        assert analyzer.needs_reprocess(pages[1]) == (True, True)

    def test_page_without_dictionary(self, published, pages):
        layout, registry, store, suggestions, _ = published([(True, False)])
        assert analyzer_for(layout, registry, store, suggestions).needs_reprocess(pages[0]) == (True, False)

    def test_subject_flag_consumed_before_group(self, published):
        """The subject alone forcing a rebuild stops the scan, siblings keep their flags."""
        layout, registry, store, suggestions, pages = published([(True, False)] * 2)
        store.invalidate(pages[0])
        store.invalidate(pages[1])

        analyzer = analyzer_for(layout, registry, store, suggestions)
        assert analyzer.needs_reprocess(pages[0]) == (True, True)
        assert analyzer.forced_pages == {pages[0]}
        assert store.get(pages[1]).regenerate & Regenerate.PAGE
