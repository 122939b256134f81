from pathlib import Path
from typing import Mapping

from .layout import OutputLayout
from .page_id import PageId
from .schemas import ExportSuggestion, FileRef, SourceImagesInfo


ExportSuggestions = Mapping[PageId, ExportSuggestion]


def _ref(path) -> FileRef:
    if not path:
        return FileRef()
    p = Path(path)
    return FileRef(filename=str(p), size=p.stat().st_size if p.exists() else 0)


def compute_source_images(page: PageId, layout: OutputLayout,
                          suggestions: ExportSuggestions) -> SourceImagesInfo:
    """Describe what the page's raw material looks like on disk right now."""
    suggestion = suggestions.get(page, ExportSuggestion())
    layered = suggestion.is_layered

    return SourceImagesInfo(
        export_suggestion=suggestion,
        output=_ref(layout.output_image(page)),
        background=_ref(layout.background_layer(page) if layered else None),
        foreground=_ref(layout.foreground_layer(page) if layered else None),
        bg44=_ref(layout.bg44_chunk(page) if suggestion.has_color_layer else None),
        jb2=_ref(layout.jb2_chunk(page) if suggestion.has_bw_layer else None),
    )


def refresh_source_images(info: SourceImagesInfo) -> SourceImagesInfo:
    """Re-stat every file named in info."""
    return info.model_copy(update={
        "output": _ref(info.output.filename),
        "background": _ref(info.background.filename),
        "foreground": _ref(info.foreground.filename),
        "bg44": _ref(info.bg44.filename),
        "jb2": _ref(info.jb2.filename),
    })


def is_chunk_cached(ref: FileRef) -> bool:
    """A chunk can be reused when it still has the size recorded for it."""
    if not ref.is_set:
        return False
    p = Path(ref.filename)
    return p.exists() and p.stat().st_size == ref.size
