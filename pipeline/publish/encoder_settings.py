"""
Settings script for the shared-dictionary text encoder (minidjvu-mod -S).

The script lists the pages to encode in project order, each with its own
options, followed by the dictionary block when the pages share one.
"""

from pathlib import Path
from typing import List, Sequence, Tuple

from .djbz import DictionaryRegistry
from .layout import OutputLayout
from .page_id import PageId
from .settings import ParameterStore


def _flag(value: bool) -> str:
    return "1" if value else "0"


def generate_page_entries(pages: Sequence[PageId], store: ParameterStore,
                          layout: OutputLayout) -> List[str]:
    lines = ["(input-files"]
    for page in pages:
        params = store.get(page)
        info = params.source_images
        suggestion = info.export_suggestion
        if suggestion.is_blank:
            lines.append(f"  (blank {layout.djvu_page(page).stem})")
            continue
        if not suggestion.has_bw_layer:
            continue
        settings = params.settings
        lines.extend([
            f"  (file {info.file_to_encode_as_text()}",
            f"    dpi           {settings.dpi}",
            f"    clean         {_flag(settings.clean)}",
            f"    erosion       {_flag(settings.erosion)}",
            f"    smooth        {_flag(settings.smooth)}",
            "  )",
        ])
    lines.append(") #input-files")
    return lines


def generate_dictionary_entries(dict_id: str, store: ParameterStore,
                                registry: DictionaryRegistry) -> List[str]:
    if registry.is_sentinel(dict_id):
        return []

    dictionary = registry.get(dict_id)
    params = dictionary.params
    lines = [
        "(djbz",
        f"  id            {dict_id}",
        f"  xtension      {params.extension}",
        f"  averaging     {_flag(params.use_averaging)}",
        f"  aggression    {params.aggression}",
        f"  classifier    {int(params.classifier)}",
        f"  no-prototypes {_flag(not params.use_prototypes)}",
        f"  erosion       {_flag(params.use_erosion)}",
        "      (files",
    ]
    for page in sorted(dictionary.pages):
        page_params = store.get(page)
        if page_params is None:
            continue
        info = page_params.source_images
        if info.export_suggestion.has_bw_layer:
            lines.append(f"            {info.file_to_encode_as_text()}")
    lines.extend(["      ) #files", ") #djbz"])
    return lines


def encoder_target(subject: PageId, dict_id: str, registry: DictionaryRegistry,
                   layout: OutputLayout) -> Path:
    """Where the encoder writes its (indirect) document."""
    if not registry.is_sentinel(dict_id) and registry.get(dict_id).page_count > 1:
        return layout.dictionary_bundle(dict_id)
    return layout.djvu_page(subject)


def generate_encoder_settings(pages: Sequence[PageId], subject: PageId, dict_id: str,
                              store: ParameterStore, registry: DictionaryRegistry,
                              layout: OutputLayout) -> Tuple[str, Path]:
    """Return the settings script and the encoder's target file."""
    lines = generate_page_entries(pages, store, layout)
    lines.extend(generate_dictionary_entries(dict_id, store, registry))
    return "\n".join(lines) + "\n", encoder_target(subject, dict_id, registry, layout)
