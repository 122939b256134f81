"""
Project file persistence.

    <project name out_dir>
      <pages>
        <page id path sub_page><suggest .../></page>
      </pages>
      <publishing bundled_name bundled_size bundled_modified>
        <page id><params djbz_id ...>...</params></page>
        <djbz_dispatcher>
          <djbz id type max last_changed output_file output_file_size output_file_last_changed>
            <djbz_params prototypes averaging erosion aggression type ext/>
          </djbz>
        </djbz_dispatcher>
        <metadata><item key value/></metadata>
      </publishing>
    </project>

Dictionary membership is not stored with the dictionaries; loading replays
each page's dictionary id without bumping revisions.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

from lxml import etree

from infra.config import PublisherConfig

from .djbz import DictionaryKind, DictionaryRegistry, DjbzDict, SENTINEL_ID
from .page_id import PageId, SubPage
from .project import PublishProject
from .schemas import (
    ClassifierType,
    ColorRect,
    DjbzParams,
    ExportSuggestion,
    FileRef,
    FileStamp,
    OutputParams,
    PageParams,
    PageSettings,
    SourceImagesInfo,
    format_timestamp,
    parse_timestamp,
)
from .settings import BundledDocument, ParameterStore

logger = logging.getLogger(__name__)

IMAGE_ROLES = ("output", "foreground", "background", "bg44", "jb2")


def _b(value: bool) -> str:
    return "1" if value else "0"


def _read_bool(el, name: str, default: bool = False) -> bool:
    value = el.get(name)
    if value is None:
        return default
    return value in ("1", "true")


def _read_int(el, name: str, default: int = 0) -> int:
    value = el.get(name)
    if value in (None, ""):
        return default
    return int(value)


# ---- value types ----------------------------------------------------------

def suggestion_to_xml(suggestion: ExportSuggestion, name: str = "suggest"):
    el = etree.Element(name)
    el.set("bw", _b(suggestion.has_bw_layer))
    el.set("color", _b(suggestion.has_color_layer))
    el.set("valid", _b(suggestion.is_valid))
    el.set("width", str(suggestion.width))
    el.set("height", str(suggestion.height))
    el.set("dpi", str(suggestion.dpi))
    return el


def suggestion_from_xml(el) -> ExportSuggestion:
    if el is None:
        return ExportSuggestion()
    return ExportSuggestion(
        has_bw_layer=_read_bool(el, "bw"),
        has_color_layer=_read_bool(el, "color"),
        is_valid=_read_bool(el, "valid"),
        width=_read_int(el, "width"),
        height=_read_int(el, "height"),
        dpi=_read_int(el, "dpi"),
    )


def djbz_params_to_xml(params: DjbzParams, name: str = "djbz_params"):
    el = etree.Element(name)
    el.set("prototypes", _b(params.use_prototypes))
    el.set("averaging", _b(params.use_averaging))
    el.set("erosion", _b(params.use_erosion))
    el.set("aggression", str(params.aggression))
    el.set("type", params.classifier.to_string())
    el.set("ext", params.extension)
    return el


def djbz_params_from_xml(el, defaults: Optional[DjbzParams] = None) -> DjbzParams:
    defaults = defaults or DjbzParams()
    if el is None:
        return defaults
    return DjbzParams(
        use_prototypes=_read_bool(el, "prototypes", defaults.use_prototypes),
        use_averaging=_read_bool(el, "averaging", defaults.use_averaging),
        use_erosion=_read_bool(el, "erosion", defaults.use_erosion),
        aggression=_read_int(el, "aggression", defaults.aggression),
        classifier=ClassifierType.from_string(el.get("type", defaults.classifier.to_string())),
        extension=el.get("ext") or defaults.extension,
    )


def settings_to_xml(settings: PageSettings, name: str = "settings"):
    el = etree.Element(name)
    el.set("dpi", str(settings.dpi))
    el.set("bsf", str(settings.bsf))
    el.set("scale_method", settings.scale_method)
    el.set("clean", _b(settings.clean))
    el.set("erosion", _b(settings.erosion))
    el.set("smooth", _b(settings.smooth))
    el.set("fg_color", settings.fg_color)
    el.set("rotation", str(settings.rotation))
    el.set("title", settings.title)
    for rect in settings.color_rects:
        rect_el = etree.SubElement(el, "color_rect")
        rect_el.set("color", rect.color)
        for attr in ("x", "y", "width", "height"):
            rect_el.set(attr, str(getattr(rect, attr)))
    return el


def settings_from_xml(el, defaults: Optional[PageSettings] = None) -> PageSettings:
    defaults = defaults or PageSettings()
    if el is None:
        return defaults
    rects = [
        ColorRect(
            color=rect_el.get("color", "#black"),
            x=_read_int(rect_el, "x"),
            y=_read_int(rect_el, "y"),
            width=_read_int(rect_el, "width"),
            height=_read_int(rect_el, "height"),
        )
        for rect_el in el.findall("color_rect")
    ]
    return PageSettings(
        dpi=_read_int(el, "dpi", defaults.dpi),
        bsf=_read_int(el, "bsf", defaults.bsf),
        scale_method=el.get("scale_method", defaults.scale_method),
        clean=_read_bool(el, "clean", defaults.clean),
        erosion=_read_bool(el, "erosion", defaults.erosion),
        smooth=_read_bool(el, "smooth", defaults.smooth),
        fg_color=el.get("fg_color", defaults.fg_color),
        color_rects=rects,
        rotation=_read_int(el, "rotation", defaults.rotation),
        title=el.get("title", defaults.title),
    )


def source_images_to_xml(info: SourceImagesInfo):
    el = etree.Element("source_images")
    el.append(suggestion_to_xml(info.export_suggestion))
    for role in IMAGE_ROLES:
        ref: FileRef = getattr(info, role)
        if ref.is_set:
            file_el = etree.SubElement(el, "file")
            file_el.set("role", role)
            file_el.set("name", ref.filename)
            file_el.set("size", str(ref.size))
    return el


def source_images_from_xml(el) -> SourceImagesInfo:
    if el is None:
        return SourceImagesInfo()
    refs = {}
    for file_el in el.findall("file"):
        role = file_el.get("role")
        if role in IMAGE_ROLES:
            refs[role] = FileRef(filename=file_el.get("name", ""), size=_read_int(file_el, "size"))
    return SourceImagesInfo(export_suggestion=suggestion_from_xml(el.find("suggest")), **refs)


def params_to_xml(params: PageParams):
    el = etree.Element("params")
    el.set("djbz_id", params.djbz_id)
    el.set("force_reprocess", str(params.force_reprocess))
    el.append(settings_to_xml(params.settings))
    el.append(source_images_to_xml(params.source_images))

    if params.djvu is not None:
        djvu_el = etree.SubElement(el, "djvu")
        djvu_el.set("file", params.djvu.path)
        djvu_el.set("size", str(params.djvu.size))
        djvu_el.set("last_changed", format_timestamp(params.djvu.last_changed))

    if params.output_params is not None:
        remembered = params.output_params
        out_el = etree.SubElement(el, "output_params")
        out_el.set("djbz_id", remembered.djbz_id)
        out_el.set("djbz_revision", format_timestamp(remembered.djbz_revision))
        out_el.append(settings_to_xml(remembered.settings))
        out_el.append(djbz_params_to_xml(remembered.djbz_params))
    return el


def params_from_xml(el, page_defaults: Optional[PageSettings] = None) -> PageParams:
    params = PageParams(
        djbz_id=el.get("djbz_id", ""),
        settings=settings_from_xml(el.find("settings"), page_defaults),
        source_images=source_images_from_xml(el.find("source_images")),
        force_reprocess=_read_int(el, "force_reprocess"),
    )

    djvu_el = el.find("djvu")
    if djvu_el is not None:
        params.djvu = FileStamp(
            path=djvu_el.get("file", ""),
            size=_read_int(djvu_el, "size"),
            last_changed=parse_timestamp(djvu_el.get("last_changed")),
        )

    out_el = el.find("output_params")
    if out_el is not None:
        params.output_params = OutputParams(
            settings=settings_from_xml(out_el.find("settings"), page_defaults),
            djbz_id=out_el.get("djbz_id", ""),
            djbz_revision=parse_timestamp(out_el.get("djbz_revision")),
            djbz_params=djbz_params_from_xml(out_el.find("djbz_params")),
        )
    return params


# ---- registry -------------------------------------------------------------

def registry_to_xml(registry: DictionaryRegistry, name: str = "djbz_dispatcher"):
    root = etree.Element(name)
    for dict_id in registry.list_all():
        dictionary = registry.get(dict_id)
        el = etree.SubElement(root, "djbz")
        el.set("id", dict_id)
        el.set("type", dictionary.kind.value)
        el.set("max", str(dictionary.max_pages))
        el.set("last_changed", format_timestamp(dictionary.revision))
        el.set("output_file", dictionary.output.path)
        el.set("output_file_size", str(dictionary.output.size))
        el.set("output_file_last_changed", format_timestamp(dictionary.output.last_changed))
        el.append(djbz_params_to_xml(dictionary.params))
    return root


def registry_from_xml(el, defaults: Optional[DjbzParams] = None,
                      pages_per_dictionary: int = 20) -> DictionaryRegistry:
    registry = DictionaryRegistry(defaults)
    if el is None:
        return registry
    for djbz_el in el.findall("djbz"):
        dict_id = djbz_el.get("id", SENTINEL_ID)
        try:
            kind = DictionaryKind(djbz_el.get("type", "auto"))
        except ValueError:
            kind = DictionaryKind.AUTO_FILL
        dictionary = DjbzDict(
            kind=kind,
            max_pages=_read_int(djbz_el, "max", pages_per_dictionary),
            params=djbz_params_from_xml(djbz_el.find("djbz_params"), defaults),
            revision=parse_timestamp(djbz_el.get("last_changed")),
        )
        dictionary.output = FileStamp(
            path=djbz_el.get("output_file", ""),
            size=_read_int(djbz_el, "output_file_size"),
            last_changed=parse_timestamp(djbz_el.get("output_file_last_changed")),
        )
        registry.put(dict_id, dictionary)
    return registry


# ---- project --------------------------------------------------------------

def project_to_xml(project: PublishProject):
    root = etree.Element("project")
    root.set("name", project.name)
    root.set("out_dir", str(project.out_dir))

    numbers: Dict[PageId, int] = {}
    pages_el = etree.SubElement(root, "pages")
    for number, page in enumerate(project.pages, start=1):
        numbers[page] = number
        page_el = etree.SubElement(pages_el, "page")
        page_el.set("id", str(number))
        page_el.set("path", page.path)
        page_el.set("sub_page", page.sub_page.to_string())
        page_el.append(suggestion_to_xml(project.suggestions.get(page, ExportSuggestion())))

    store = project.store
    publishing = etree.SubElement(root, "publishing")
    publishing.set("bundled_name", store.bundled.filename)
    publishing.set("bundled_size", str(store.bundled.size))
    publishing.set("bundled_modified", format_timestamp(store.bundled.last_changed))

    for page in store.pages():
        if page not in numbers:
            logger.warning("Dropping params of page %s, it is not in the project", page)
            continue
        page_el = etree.SubElement(publishing, "page")
        page_el.set("id", str(numbers[page]))
        page_el.append(params_to_xml(store.get(page)))

    publishing.append(registry_to_xml(project.registry))

    metadata_el = etree.SubElement(publishing, "metadata")
    for key, value in store.metadata.items():
        item = etree.SubElement(metadata_el, "item")
        item.set("key", key)
        item.set("value", value)
    return root


def save_project(project: PublishProject, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tree = etree.ElementTree(project_to_xml(project))
    tree.write(str(path), pretty_print=True, xml_declaration=True, encoding="utf-8")
    project.project_file = path


def load_project(path: Path, config: Optional[PublisherConfig] = None) -> PublishProject:
    path = Path(path)
    config = config or PublisherConfig()
    root = etree.parse(str(path)).getroot()

    pages = []
    suggestions = {}
    by_number: Dict[str, PageId] = {}
    pages_el = root.find("pages")
    for page_el in (pages_el.findall("page") if pages_el is not None else []):
        page = PageId(page_el.get("path", ""), SubPage.from_string(page_el.get("sub_page", "single")))
        pages.append(page)
        by_number[page_el.get("id")] = page
        suggestions[page] = suggestion_from_xml(page_el.find("suggest"))

    publishing = root.find("publishing")
    store = ParameterStore(config.page_defaults)
    registry_el = publishing.find("djbz_dispatcher") if publishing is not None else None
    registry = registry_from_xml(registry_el, config.dictionary_defaults, config.pages_per_dictionary)

    if publishing is not None:
        for page_el in publishing.findall("page"):
            page = by_number.get(page_el.get("id"))
            params_el = page_el.find("params")
            if page is None or params_el is None:
                continue
            params = params_from_xml(params_el, config.page_defaults)
            store.set(page, params)
            if params.djbz_id:
                registry.assign(page, params.djbz_id, no_revision_bump=True, create_missing=True)

        store.bundled = BundledDocument(
            filename=publishing.get("bundled_name", ""),
            size=_read_int(publishing, "bundled_size"),
            last_changed=parse_timestamp(publishing.get("bundled_modified")),
        )
        if store.bundled.filename and not store.bundled.stamp().matches_disk():
            store.bundled.reset()

        metadata_el = publishing.find("metadata")
        if metadata_el is not None:
            store.metadata = {item.get("key"): item.get("value", "") for item in metadata_el.findall("item")}

    return PublishProject(
        name=root.get("name", path.stem),
        out_dir=Path(root.get("out_dir", str(path.parent))),
        pages=pages,
        suggestions=suggestions,
        config=config,
        registry=registry,
        store=store,
        project_file=path,
    )
