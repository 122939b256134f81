"""
The five publishing stages.

Each stage takes its work set and the run's snapshot, drives the external
tools and returns the artifacts it produced. Nothing here writes to the
live parameter store or registry; the task commits results after every
stage has succeeded.
"""

import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from infra.config import EncoderBinaries
from infra.external_tool import CancelToken, ExternalToolRunner
from infra.pipeline.logger import PipelineLogger
from infra.pipeline.parallel import ParallelProcessor

from .djbz import DictionaryRegistry
from .encoder_settings import generate_encoder_settings
from .errors import FilesystemInconsistency
from .exporter import LayerExporter
from .layout import OutputLayout
from .page_id import PageId
from .plan import StagePlan
from .schemas import PageParams
from .settings import ParameterStore


class Stage(str, Enum):
    EXPORT = "export"
    ENCODE_RASTER = "encode_raster"
    ENCODE_TEXT = "encode_text"
    ASSEMBLE = "assemble"
    POSTPROCESS = "postprocess"


class StageState(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


ProgressCallback = Callable[[Stage, float, StageState], None]


@dataclass
class StageContext:
    """What a stage may read: the snapshot plus the tools to run."""
    layout: OutputLayout
    store: ParameterStore
    registry: DictionaryRegistry
    encoders: EncoderBinaries
    runner: ExternalToolRunner
    exporter: LayerExporter
    logger: PipelineLogger
    max_workers: int = 1
    progress_callback: Optional[ProgressCallback] = None

    def report(self, stage: Stage, percent: float, state: StageState = StageState.IN_PROGRESS) -> None:
        if self.progress_callback:
            self.progress_callback(stage, percent, state)

    def params(self, page: PageId) -> PageParams:
        params = self.store.get(page)
        if params is None:
            raise KeyError(f"No params for page {page}")
        return params


def _expect_file(path: Path) -> Path:
    if not path.exists():
        raise FilesystemInconsistency(path)
    return path


def _run_per_page(ctx: StageContext, stage: Stage, pages: Sequence[PageId],
                  worker: Callable[[PageId, CancelToken], Path], cancel_token: CancelToken,
                  description: str) -> List[Path]:
    total = len(pages)

    def on_progress(completed: int, total_items: int) -> None:
        ctx.report(stage, 100.0 * completed / total_items)

    processor = ParallelProcessor(
        max_workers=ctx.max_workers,
        logger=ctx.logger,
        description=description,
        progress_callback=on_progress,
        cancel_token=cancel_token,
    )
    produced = processor.process(list(pages), worker)
    if total:
        ctx.report(stage, 100.0, StageState.COMPLETED)
    return produced


# ---- export ---------------------------------------------------------------

def run_export(ctx: StageContext, pages: Sequence[PageId], cancel_token: CancelToken) -> List[Path]:
    """Split layered pages into foreground and background images."""
    ctx.layout.ensure_dirs()

    def export_page(page: PageId, token: CancelToken) -> Path:
        token.throw_if_cancelled()
        info = ctx.params(page).source_images
        background = ctx.layout.background_layer(page)
        foreground = ctx.layout.foreground_layer(page)
        ctx.exporter.export(page, Path(info.output.filename), background, foreground,
                            info.export_suggestion)
        _expect_file(background)
        return _expect_file(foreground)

    return _run_per_page(ctx, Stage.EXPORT, pages, export_page, cancel_token, "Exporting layers")


# ---- raster (bg44) --------------------------------------------------------

def raster_encoder_args(params: PageParams, target: Path) -> List[str]:
    settings = params.settings
    args = ["-iff", "-dpi", str(settings.dpi)]
    if settings.bsf > 1:
        args += ["-bsf", str(settings.bsf), "-bsm", settings.scale_method]
    args += [params.source_images.file_to_encode_as_raster(), str(target)]
    return args


def run_encode_raster(ctx: StageContext, pages: Sequence[PageId], cancel_token: CancelToken) -> List[Path]:
    executable = ctx.encoders.resolve("c44")

    def encode_page(page: PageId, token: CancelToken) -> Path:
        token.throw_if_cancelled()
        target = ctx.layout.bg44_chunk(page)
        ctx.runner.run(executable, raster_encoder_args(ctx.params(page), target), token)
        return _expect_file(target)

    return _run_per_page(ctx, Stage.ENCODE_RASTER, pages, encode_page, cancel_token, "Encoding pictures")


# ---- text (jb2 + shared dictionary) ---------------------------------------

def text_encoder_args(settings_file: Path, target: Path) -> List[str]:
    return ["-u", "-r", "-j", "-S", str(settings_file), str(target)]


def run_encode_text(ctx: StageContext, plan: StagePlan, subject: PageId,
                    cancel_token: CancelToken) -> List[Path]:
    """One encoder call for the whole group; progress comes from the encoder itself."""
    pages = plan.ordered(plan.to_encode_text)
    script, target = generate_encoder_settings(
        pages, subject, plan.dict_id, ctx.store, ctx.registry, ctx.layout
    )
    ctx.layout.djvu_dir.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(mode="w", suffix=".txt", prefix="minidjvu_", delete=False) as tmp:
        tmp.write(script)
        settings_file = Path(tmp.name)

    try:
        ctx.logger.debug("Text encoder settings", dictionary=plan.dict_id, pages=len(pages))
        ctx.runner.run_with_progress(
            ctx.encoders.resolve("minidjvu"),
            text_encoder_args(settings_file, target),
            lambda percent: ctx.report(Stage.ENCODE_TEXT, percent),
            cancel_token,
        )
    finally:
        os.unlink(settings_file)

    produced = []
    for page in pages:
        if ctx.params(page).source_images.export_suggestion.has_bw_layer:
            produced.append(_expect_file(ctx.layout.jb2_chunk(page)))

    if not ctx.registry.is_sentinel(plan.dict_id):
        extension = ctx.registry.get(plan.dict_id).params.extension
        produced.append(_expect_file(ctx.layout.dictionary_file(plan.dict_id, extension)))

    ctx.report(Stage.ENCODE_TEXT, 100.0, StageState.COMPLETED)
    return produced


# ---- assemble -------------------------------------------------------------

def assemble_args(page: PageId, params: PageParams, dict_id: str,
                  registry: DictionaryRegistry, layout: OutputLayout) -> List[str]:
    suggestion = params.source_images.export_suggestion
    args = [
        str(layout.djvu_page(page)),
        f"INFO={suggestion.width},{suggestion.height},{suggestion.dpi}",
    ]
    # the dictionary must come before the Sjbz chunk that refers to it
    if not registry.is_sentinel(dict_id):
        extension = registry.get(dict_id).params.extension
        args.append(f"INCL={dict_id}.{extension}")
    args.append(f"FGbz={params.settings.fgbz_argument()}")
    if suggestion.has_bw_layer:
        args.append(f"Sjbz={layout.jb2_chunk(page)}")
    if suggestion.has_color_layer:
        args.append(f"BG44={layout.bg44_chunk(page)}")
    return args


def run_assemble(ctx: StageContext, pages: Sequence[PageId], cancel_token: CancelToken) -> List[Path]:
    executable = ctx.encoders.resolve("djvumake")

    def assemble_page(page: PageId, token: CancelToken) -> Path:
        token.throw_if_cancelled()
        params = ctx.params(page)
        args = assemble_args(page, params, params.djbz_id, ctx.registry, ctx.layout)
        ctx.runner.run(executable, args, token, cwd=ctx.layout.djvu_dir)
        return _expect_file(ctx.layout.djvu_page(page))

    return _run_per_page(ctx, Stage.ASSEMBLE, pages, assemble_page, cancel_token, "Assembling pages")


# ---- postprocess ----------------------------------------------------------

def djvused_quote(text: str) -> str:
    """Escape text for a double-quoted djvused string."""
    return text.replace("\\", "\\\\").replace('"', '\\"')


def postprocess_script(params: PageParams) -> str:
    settings = params.settings
    script = ""
    if settings.title:
        script += f'select 1; set-page-title "{djvused_quote(settings.title)}"; '
    script += f'select 1; set-rotation "{settings.rotation}"; '
    return script


def run_postprocess(ctx: StageContext, pages: Sequence[PageId], cancel_token: CancelToken) -> List[Path]:
    executable = ctx.encoders.resolve("djvused")

    def postprocess_page(page: PageId, token: CancelToken) -> Path:
        token.throw_if_cancelled()
        target = _expect_file(ctx.layout.djvu_page(page))
        ctx.runner.run(executable, [str(target), "-e", postprocess_script(ctx.params(page)), "-s"], token)
        return target

    return _run_per_page(ctx, Stage.POSTPROCESS, pages, postprocess_page, cancel_token, "Postprocessing pages")

