"""
Publishing task for one page.

process() decides whether the page, or any page sharing its dictionary,
is stale. If so it validates the group, takes a snapshot of the registry
and the parameter store, runs the stages against the snapshot and only
then writes the results back:

    export -> encode raster | encode text -> assemble -> postprocess

Any error or a cancel aborts the whole run and nothing is written back,
so the next request sees the same stale state and rebuilds it.
"""

import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from infra.external_tool import CancelToken, ExternalToolRunner
from infra.pipeline.logger import PipelineLogger

from .djbz import DictionaryRegistry
from .errors import Cancelled, FilesystemInconsistency
from .exporter import LayerExporter, PillowLayerExporter
from .page_id import PageId
from .plan import StagePlan, build_stage_plan
from .project import PublishProject
from .schemas import FileStamp, OutputParams, Regenerate
from .settings import ParameterStore
from .source_images import refresh_source_images
from .stages import (
    ProgressCallback,
    Stage,
    StageContext,
    StageState,
    run_assemble,
    run_encode_raster,
    run_encode_text,
    run_export,
    run_postprocess,
)
from .staleness import StalenessAnalyzer
from .validation import ParamsValidator


@dataclass
class PublishResult:
    page: PageId
    reprocessed: bool
    dictionary_cached: bool
    dictionary: Optional[str] = None
    plan: Optional[StagePlan] = None
    bundle_ready: bool = False
    stage_seconds: Dict[str, float] = field(default_factory=dict)


class PublishTask:
    def __init__(
        self,
        project: PublishProject,
        page: PageId,
        runner: Optional[ExternalToolRunner] = None,
        exporter: Optional[LayerExporter] = None,
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
        on_bundle_ready: Optional[Callable[[PublishProject], None]] = None,
        logger: Optional[PipelineLogger] = None,
    ):
        self.project = project
        self.page = page
        self.cancel_token = cancel_token or CancelToken()
        self.progress_callback = progress_callback
        self.on_bundle_ready = on_bundle_ready
        self.logger = logger or project.create_logger("publish")
        self.runner = runner or ExternalToolRunner(project.config.poll_interval_seconds, logger=self.logger)
        self.exporter = exporter or PillowLayerExporter()

    def process(self) -> PublishResult:
        project = self.project
        logger = self.logger

        self.cancel_token.throw_if_cancelled()
        if project.auto_assign():
            logger.debug("Dictionary assignment updated", page=str(self.page))

        analyzer = StalenessAnalyzer(project.registry, project.store, project.layout, project.suggestions)
        try:
            needs_reprocess, dictionary_cached = analyzer.needs_reprocess(self.page)
            logger.info(
                f"Page {self.page}: {'rebuilding' if needs_reprocess else 'up to date'}",
                page=str(self.page),
                needs_reprocess=needs_reprocess,
                dictionary_cached=dictionary_cached,
            )

            result = PublishResult(self.page, needs_reprocess, dictionary_cached)
            if needs_reprocess:
                self.cancel_token.throw_if_cancelled()
                ParamsValidator(
                    project.registry, project.store, project.layout,
                    project.suggestions, project.config.pages_per_dictionary,
                ).validate_all(self.page)
                self._rebuild(result, analyzer.forced_pages)

        except Cancelled:
            project.store.restore_force_reprocess(analyzer.forced_pages)
            logger.warning(f"⚠️  Publishing cancelled: {self.page}", page=str(self.page))
            raise
        except Exception as e:
            project.store.restore_force_reprocess(analyzer.forced_pages)
            logger.error(f"❌ Publishing failed: {self.page}", page=str(self.page), error=str(e))
            raise

        if needs_reprocess or project.store.bundled.needs_update():
            if project.check_pages_ready():
                result.bundle_ready = True
                logger.info("All pages ready for bundling")
                if self.on_bundle_ready:
                    self.on_bundle_ready(project)

        return result

    def _group_in_project_order(self, registry: DictionaryRegistry) -> List[PageId]:
        members = registry.members_of_same_dictionary(self.page)
        ordered = [page for page in self.project.pages if page in members]
        # members the page sequence does not know about still belong to the group
        ordered += sorted(members.difference(ordered))
        return ordered

    def _rebuild(self, result: PublishResult, forced_pages) -> None:
        project = self.project
        registry = project.registry.snapshot()
        store = project.store.snapshot()

        dict_id = registry.dictionary_of(self.page)
        group = self._group_in_project_order(registry)
        plan = build_stage_plan(group, dict_id, store, registry, result.dictionary_cached, forced_pages)
        result.dictionary = dict_id
        result.plan = plan
        self.logger.info(
            f"Dictionary {dict_id}: {len(group)} pages",
            dictionary=dict_id,
            pages=len(group),
            work_sets=plan.summary(),
        )

        ctx = StageContext(
            layout=project.layout,
            store=store,
            registry=registry,
            encoders=project.config.encoders,
            runner=self.runner,
            exporter=self.exporter,
            logger=self.logger,
            max_workers=project.config.max_workers,
            progress_callback=self.progress_callback,
        )

        self._run_stage(ctx, result, Stage.EXPORT, plan.ordered(plan.to_export), run_export)
        self._run_encoders(ctx, result, plan)
        self._run_stage(ctx, result, Stage.ASSEMBLE, plan.ordered(plan.to_assemble), run_assemble)
        self._run_stage(ctx, result, Stage.POSTPROCESS, plan.ordered(plan.to_postprocess), run_postprocess)

        self.cancel_token.throw_if_cancelled()
        self._commit(dict_id, group, store, registry)
        self._record_metrics(dict_id, plan, result.stage_seconds)

    def _run_stage(self, ctx: StageContext, result: PublishResult, stage: Stage,
                   pages: List[PageId], stage_func, cancel_token: Optional[CancelToken] = None) -> None:
        cancel_token = cancel_token or self.cancel_token
        cancel_token.throw_if_cancelled()
        if not pages:
            ctx.report(stage, 100.0, StageState.SKIPPED)
            return

        start_time = time.time()
        stage_func(ctx, pages, cancel_token)
        elapsed = time.time() - start_time
        result.stage_seconds[stage.value] = elapsed
        self.logger.info(f"✅ {stage.value} complete", pages=len(pages), duration_seconds=round(elapsed, 3))

    def _encode_text(self, ctx: StageContext, result: PublishResult, plan: StagePlan,
                     cancel_token: CancelToken) -> None:
        def stage_func(ctx, pages, token):
            return run_encode_text(ctx, plan, self.page, token)

        self._run_stage(ctx, result, Stage.ENCODE_TEXT, plan.ordered(plan.to_encode_text),
                        stage_func, cancel_token)

    def _run_encoders(self, ctx: StageContext, result: PublishResult, plan: StagePlan) -> None:
        """Picture and text layers are independent and run side by side."""
        token = self.cancel_token.child()
        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(self._run_stage, ctx, result, Stage.ENCODE_RASTER,
                                plan.ordered(plan.to_encode_raster), run_encode_raster, token),
                executor.submit(self._encode_text, ctx, result, plan, token),
            ]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            if any(f.exception() is not None for f in done):
                token.cancel()

        errors = [f.exception() for f in futures if f.exception() is not None]
        if not errors:
            return
        # prefer the real failure over the cancel it caused in the sibling
        for error in errors:
            if not isinstance(error, Cancelled):
                raise error
        raise errors[0]

    def _commit(self, dict_id: str, group: List[PageId], snapshot: ParameterStore,
                registry: DictionaryRegistry) -> None:
        """Write the results of a successful run to the live stores."""
        project = self.project
        layout = project.layout
        dictionary = registry.get(dict_id)

        dictionary_file = None
        if not registry.is_sentinel(dict_id):
            dictionary_file = layout.dictionary_file(dict_id, dictionary.params.extension)
            if not dictionary_file.exists():
                raise FilesystemInconsistency(dictionary_file)
        for page in group:
            if not layout.djvu_page(page).exists():
                raise FilesystemInconsistency(layout.djvu_page(page))

        if dictionary_file is not None:
            project.registry.update_output(dict_id, dictionary_file)

        for page in group:
            used = snapshot.get(page)
            params = project.store.get(page) or used
            params.djvu = FileStamp.from_disk(layout.djvu_page(page))
            params.source_images = refresh_source_images(used.source_images)
            params.output_params = OutputParams(
                settings=used.settings,
                djbz_id=dict_id,
                djbz_revision=dictionary.revision,
                djbz_params=dictionary.params,
            )
            params.force_reprocess = int(params.regenerate & ~Regenerate.PAGE)
            project.store.set(page, params)

        self.logger.info(f"✅ Dictionary {dict_id} published", dictionary=dict_id, pages=len(group))

    def _record_metrics(self, dict_id: str, plan: StagePlan, stage_seconds: Dict[str, float]) -> None:
        metrics = self.project.metrics()
        sizes = {
            Stage.EXPORT.value: len(plan.to_export),
            Stage.ENCODE_RASTER.value: len(plan.to_encode_raster),
            Stage.ENCODE_TEXT.value: len(plan.to_encode_text),
            Stage.ASSEMBLE.value: len(plan.to_assemble),
            Stage.POSTPROCESS.value: len(plan.to_postprocess),
        }
        for stage, seconds in stage_seconds.items():
            metrics.record(f"{dict_id}/{stage}", time_seconds=seconds, pages=sizes[stage], accumulate=True)
