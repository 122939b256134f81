#!/usr/bin/env python3
"""
DjVu publisher CLI - incremental DjVu publishing of processed scans

Commands:
    publisher status <project.xml>                 Show dictionaries and page readiness
    publisher process <project.xml> --page N       Publish one page (and its dictionary)
    publisher process <project.xml> --all          Publish every stale dictionary
    publisher reassign <project.xml>               Rebuild non-locked dictionaries from scratch
    publisher invalidate <project.xml> --page N    Force a page to be rebuilt
    publisher bundle <project.xml>                 Build the bundled multi-page document
"""

import sys
import signal
import argparse
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from infra.config import load_publisher_config
from infra.external_tool import CancelToken, ExternalToolRunner
from infra.pipeline.rich_progress import RichStageProgress
from pipeline.publish.bundle import BundleBuilder
from pipeline.publish.errors import Cancelled, PublishError
from pipeline.publish.project import PublishProject
from pipeline.publish.project_xml import load_project, save_project
from pipeline.publish.task import PublishTask


def _load(args) -> PublishProject:
    project_file = Path(args.project).expanduser()
    if not project_file.exists():
        print(f"❌ Project file not found: {project_file}")
        sys.exit(1)
    config = load_publisher_config(project_file.parent)
    return load_project(project_file, config)


def _selected_pages(project: PublishProject, args):
    if getattr(args, "all", False):
        return list(project.pages)
    if args.page is None:
        print("❌ Specify --page N or --all")
        sys.exit(1)
    return [project.page_by_number(args.page)]


def _build_bundle(project: PublishProject, output=None, cancel_token=None) -> bool:
    logger = project.create_logger("bundle")
    builder = BundleBuilder(
        project.store,
        project.layout,
        project.config.encoders,
        ExternalToolRunner(project.config.poll_interval_seconds, logger=logger),
        logger=logger,
    )
    target = Path(output) if output else None
    if target is None and not project.store.bundled.filename:
        target = project.default_bundle_path()
    return builder.build(project.pages, target, cancel_token)


# ===== Commands =====

def cmd_status(args):
    """Show dictionaries and which pages are up to date."""
    project = _load(args)
    registry = project.registry

    print(f"\n📊 Publishing Status: {project.name}")
    print(f"Pages: {len(project.pages)}   Output: {project.layout.djvu_dir}")
    print("=" * 80)

    for dict_id in registry.list_all():
        dictionary = registry.get(dict_id)
        cached = registry.is_output_cached(dict_id)
        symbol = '✅' if cached else '○'
        print(f"\n{symbol} {dict_id}  [{dictionary.kind.value}]  {dictionary.page_count}/{dictionary.max_pages} pages")
        if not registry.is_sentinel(dict_id):
            print(f"   Params: {dictionary.params.model_dump(mode='json')}")

    ready = project.check_pages_ready()
    print()
    print("=" * 80)
    print(f"{'✅' if ready else '⏳'} All pages ready: {ready}")
    if project.store.bundled.filename:
        state = "needs update" if project.store.bundled.needs_update() else "up to date"
        print(f"📚 Bundled document: {project.store.bundled.filename} ({state})")


def cmd_process(args):
    """Publish the selected pages."""
    project = _load(args)
    pages = _selected_pages(project, args)
    if args.all:
        project.auto_assign()
        pages = project.filter_batch_pages(pages)

    cancel_token = CancelToken()
    signal.signal(signal.SIGINT, lambda signum, frame: cancel_token.cancel())

    bundle_ready = False
    try:
        for i, page in enumerate(pages, 1):
            print(f"[{i}/{len(pages)}] {page}")
            with RichStageProgress(prefix="  ") as progress:
                result = PublishTask(
                    project,
                    page,
                    cancel_token=cancel_token,
                    progress_callback=progress,
                ).process()
            if result.reprocessed:
                print(f"✅ Published dictionary {result.dictionary} ({len(result.plan.group)} pages)")
            else:
                print("✅ Up to date")
            bundle_ready = result.bundle_ready
    except Cancelled:
        print("\n⚠️  Cancelled, nothing from the interrupted run was recorded")
        save_project(project, project.project_file)
        sys.exit(130)
    except PublishError as e:
        print(f"❌ {e}")
        save_project(project, project.project_file)
        sys.exit(1)

    if bundle_ready and args.bundle:
        if _build_bundle(project, cancel_token=cancel_token):
            print(f"📚 Bundled document: {project.store.bundled.filename}")

    save_project(project, project.project_file)


def cmd_reassign(args):
    """Reset every non-locked dictionary and assign pages again."""
    project = _load(args)
    changed = project.reassign_all(args.pages_per_dictionary)
    save_project(project, project.project_file)
    print(f"✅ Reassigned {changed} pages into {len(project.registry.list_all()) - 1} dictionaries")


def cmd_invalidate(args):
    """Mark pages to be rebuilt on the next run."""
    project = _load(args)
    pages = _selected_pages(project, args)
    project.invalidate(pages)
    save_project(project, project.project_file)
    print(f"✅ Invalidated {len(pages)} pages")


def cmd_bundle(args):
    """Build the bundled document if every page is ready."""
    project = _load(args)
    if not project.check_pages_ready():
        print("❌ Not all pages are published yet, run 'process --all' first")
        sys.exit(1)
    try:
        if not _build_bundle(project, args.output):
            print("⚠️  A bundled document is already being built")
            return
    except PublishError as e:
        print(f"❌ {e}")
        sys.exit(1)
    save_project(project, project.project_file)
    print(f"📚 Bundled document: {project.store.bundled.filename}")


def main():
    parser = argparse.ArgumentParser(
        prog='publisher',
        description='Incremental DjVu publishing with shared dictionaries',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  publisher status book/project.xml
  publisher process book/project.xml --page 12
  publisher process book/project.xml --all --bundle
  publisher reassign book/project.xml --pages-per-dictionary 30
  publisher invalidate book/project.xml --all
  publisher bundle book/project.xml --output book.djvu
"""
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')
    subparsers.required = True

    status_parser = subparsers.add_parser('status', help='Show publishing status')
    status_parser.add_argument('project', help='Project file')
    status_parser.set_defaults(func=cmd_status)

    process_parser = subparsers.add_parser('process', help='Publish pages')
    process_parser.add_argument('project', help='Project file')
    process_parser.add_argument('--page', type=int, help='Page number (1-based)')
    process_parser.add_argument('--all', action='store_true', help='All pages')
    process_parser.add_argument('--bundle', action='store_true', help='Build the bundled document when all pages are ready')
    process_parser.set_defaults(func=cmd_process)

    reassign_parser = subparsers.add_parser('reassign', help='Reassign pages to dictionaries')
    reassign_parser.add_argument('project', help='Project file')
    reassign_parser.add_argument('--pages-per-dictionary', type=int, default=None, help='Override the configured dictionary size')
    reassign_parser.set_defaults(func=cmd_reassign)

    invalidate_parser = subparsers.add_parser('invalidate', help='Force pages to be rebuilt')
    invalidate_parser.add_argument('project', help='Project file')
    invalidate_parser.add_argument('--page', type=int, help='Page number (1-based)')
    invalidate_parser.add_argument('--all', action='store_true', help='All pages')
    invalidate_parser.set_defaults(func=cmd_invalidate)

    bundle_parser = subparsers.add_parser('bundle', help='Build the bundled document')
    bundle_parser.add_argument('project', help='Project file')
    bundle_parser.add_argument('--output', help='Bundled document path')
    bundle_parser.set_defaults(func=cmd_bundle)

    args = parser.parse_args()
    try:
        args.func(args)
    except PublishError as e:
        print(f"❌ {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
