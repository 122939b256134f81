from pathlib import Path
from typing import Protocol

from PIL import Image

from .page_id import PageId
from .schemas import ExportSuggestion


class LayerExporter(Protocol):
    """Splits a processed page image into background and foreground layers."""

    def export(self, page: PageId, source: Path, background: Path, foreground: Path,
               suggestion: ExportSuggestion) -> None:
        ...


class PillowLayerExporter:
    """
    Plain threshold split.

    Foreground is the bitonal text layer, background the colour picture
    layer with the text pixels kept. Good enough when the page was already
    cleaned up upstream.
    """

    def __init__(self, threshold: int = 128):
        self.threshold = threshold

    def export(self, page: PageId, source: Path, background: Path, foreground: Path,
               suggestion: ExportSuggestion) -> None:
        background.parent.mkdir(parents=True, exist_ok=True)
        foreground.parent.mkdir(parents=True, exist_ok=True)

        with Image.open(source) as image:
            dpi = (suggestion.dpi, suggestion.dpi) if suggestion.dpi else image.info.get("dpi")
            save_kwargs = {"dpi": dpi} if dpi else {}

            gray = image.convert("L")
            bitonal = gray.point(lambda v: 255 if v >= self.threshold else 0).convert("1")
            bitonal.save(foreground, format="TIFF", **save_kwargs)

            image.convert("RGB").save(background, format="TIFF", **save_kwargs)
