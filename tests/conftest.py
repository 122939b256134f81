"""
Shared fixtures for publishing tests.

All tests use real filesystem operations with temporary directories and
small stand-in encoder executables written as Python scripts. No mocking
- the task drives real child processes.

The stand-ins understand a few environment variables:
    FAKE_TOOL_LOG      JSON lines log of every call (tool, args, cwd)
    FAKE_FAIL_TOOL     name of a tool that exits with status 3
    FAKE_SLOW_TOOL     name of a tool that sleeps between progress lines
    FAKE_NO_OUTPUT_TOOL name of a tool that succeeds without writing anything
"""

import json
import os
import stat
import sys
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import pytest
from PIL import Image

from infra.config import EncoderBinaries, PublisherConfig
from pipeline.publish.djbz import DictionaryRegistry
from pipeline.publish.layout import OutputLayout
from pipeline.publish.page_id import PageId
from pipeline.publish.project import PublishProject
from pipeline.publish.schemas import ExportSuggestion, FileStamp
from pipeline.publish.settings import ParameterStore
from pipeline.publish.source_images import compute_source_images


_PRELUDE = '''
import json, os, sys, time
from pathlib import Path

TOOL = {tool!r}
ARGS = sys.argv[1:]

log = os.environ.get("FAKE_TOOL_LOG")
if log:
    with open(log, "a") as f:
        f.write(json.dumps({{"tool": TOOL, "args": ARGS, "cwd": os.getcwd()}}) + "\\n")

if os.environ.get("FAKE_FAIL_TOOL") == TOOL:
    print("fake failure", flush=True)
    sys.exit(3)

if os.environ.get("FAKE_NO_OUTPUT_TOOL") == TOOL:
    sys.exit(0)

SLOW = os.environ.get("FAKE_SLOW_TOOL") == TOOL
'''

FAKE_TOOLS = {
    "c44": '''
dpi = ARGS[ARGS.index("-dpi") + 1]
source, target = ARGS[-2], ARGS[-1]
Path(target).write_text("BG44 %s dpi=%s %s\\n" % (source, dpi, " ".join(ARGS[:-2])))
''',
    "minidjvu": '''
settings_file = ARGS[ARGS.index("-S") + 1]
target = Path(ARGS[-1])
out_dir = target.parent
lines = Path(settings_file).read_text().splitlines()

dict_id = ext = None
for line in lines:
    parts = line.split()
    if not parts:
        continue
    if parts[0] == "(file":
        stem = Path(parts[1]).stem
        (out_dir / (stem + ".jb2")).write_text("JB2 %s\\n" % parts[1])
    elif parts[0] == "id":
        dict_id = parts[1]
    elif parts[0] == "xtension":
        ext = parts[1]

for percent in (25, 50, 75, 100):
    print("[%d%%]" % percent, flush=True)
    if SLOW:
        time.sleep(0.5)

if dict_id and ext:
    (out_dir / ("%s.%s" % (dict_id, ext))).write_text("DJBZ %s\\n%s" % (dict_id, "\\n".join(lines)))
target.write_text("INDIRECT %s\\n" % target.name)
''',
    "djvumake": '''
target = Path(ARGS[0])
for arg in ARGS[1:]:
    key, _, value = arg.partition("=")
    if key in ("INCL", "Sjbz", "BG44") and not os.path.exists(value):
        print("missing chunk %s" % value, flush=True)
        sys.exit(2)
target.write_text("DJVU %s\\n" % " ".join(ARGS[1:]))
''',
    "djvused": '''
target = Path(ARGS[0])
script = ARGS[ARGS.index("-e") + 1]
with open(target, "a") as f:
    f.write("SED %s\\n" % script)
''',
    "djvm": '''
target = Path(ARGS[ARGS.index("-c") + 1])
pages = ARGS[ARGS.index("-c") + 2:]
with open(target, "w") as out:
    for page in pages:
        out.write(Path(page).read_text())
''',
}


def write_fake_tool(bin_dir: Path, tool: str) -> Path:
    script = bin_dir / f"fake-{tool}"
    script.write_text(f"#!{sys.executable}\n" + _PRELUDE.format(tool=tool) + FAKE_TOOLS[tool])
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def tool_log(tmp_path, monkeypatch):
    log = tmp_path / "tools.jsonl"
    monkeypatch.setenv("FAKE_TOOL_LOG", str(log))
    monkeypatch.delenv("FAKE_FAIL_TOOL", raising=False)
    monkeypatch.delenv("FAKE_SLOW_TOOL", raising=False)
    monkeypatch.delenv("FAKE_NO_OUTPUT_TOOL", raising=False)
    return log


@pytest.fixture
def fake_encoders(tmp_path, tool_log) -> EncoderBinaries:
    """EncoderBinaries pointing at the stand-in scripts."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return EncoderBinaries(**{tool: str(write_fake_tool(bin_dir, tool)) for tool in FAKE_TOOLS})


def tool_calls(log: Path, tool: str = None) -> List[Dict]:
    if not log.exists():
        return []
    calls = [json.loads(line) for line in log.read_text().splitlines() if line.strip()]
    if tool is not None:
        calls = [c for c in calls if c["tool"] == tool]
    return calls


@pytest.fixture
def calls(tool_log):
    """calls("c44") -> list of recorded invocations of that tool."""
    def _calls(tool: str = None) -> List[Dict]:
        return tool_calls(tool_log, tool)
    return _calls


def suggestion(bw: bool, color: bool) -> ExportSuggestion:
    return ExportSuggestion(has_bw_layer=bw, has_color_layer=color, is_valid=True,
                            width=40, height=30, dpi=300)


@pytest.fixture
def make_project(tmp_path, fake_encoders):
    """
    Factory for a project with real page images.

    kinds is a sequence of (has_bw_layer, has_color_layer) per page.
    """
    def _make(kinds: Sequence[Tuple[bool, bool]], pages_per_dictionary: int = 20,
              name: str = "book") -> PublishProject:
        out_dir = tmp_path / "out"
        out_dir.mkdir(exist_ok=True)
        pages = []
        suggestions = {}
        for i, (bw, color) in enumerate(kinds, start=1):
            page = PageId(str(tmp_path / "scans" / f"page{i:03d}.png"))
            image = Image.new("RGB", (40, 30), "white")
            for x in range(5, 15):
                image.putpixel((x, 10), (0, 0, 0))
            image.save(out_dir / f"page{i:03d}.tif", format="TIFF")
            pages.append(page)
            suggestions[page] = suggestion(bw, color)

        config = PublisherConfig(
            encoders=fake_encoders,
            pages_per_dictionary=pages_per_dictionary,
            max_workers=2,
            poll_interval_seconds=0.05,
        )
        return PublishProject(name, out_dir, pages, suggestions, config=config)

    return _make


@pytest.fixture
def pages():
    """Five plain page ids in project order."""
    return [PageId(f"/scans/page{i:03d}.png") for i in range(1, 6)]


def _touch_bigger(path: Path) -> None:
    with open(path, "a") as f:
        f.write("changed\n")
    os.utime(path, None)


@pytest.fixture
def touch_bigger():
    """Change a file's size so recorded stamps stop matching."""
    return _touch_bigger


@pytest.fixture
def published(tmp_path):
    """
    Factory for registry/store state as a successful run leaves it,
    built directly on disk without running any encoder.

    Returns (layout, registry, store, suggestions, pages).
    """
    def _published(kinds: Sequence[Tuple[bool, bool]], pages_per_dictionary: int = 20):
        layout = OutputLayout(tmp_path / "out")
        layout.djvu_dir.mkdir(parents=True, exist_ok=True)
        registry = DictionaryRegistry()
        store = ParameterStore()

        pages = []
        suggestions = {}
        for i, (bw, color) in enumerate(kinds, start=1):
            page = PageId(str(tmp_path / "scans" / f"page{i:03d}.png"))
            pages.append(page)
            suggestions[page] = suggestion(bw, color)
            layout.output_image(page).write_bytes(b"TIFF" * i)

        registry.auto_assign(pages, suggestions, store, pages_per_dictionary)

        for page in pages:
            s = suggestions[page]
            if s.has_bw_layer:
                layout.jb2_chunk(page).write_text(f"JB2 {page.stem}\n")
            if s.has_color_layer:
                layout.bg44_chunk(page).write_text(f"BG44 {page.stem}\n")
            layout.djvu_page(page).write_text(f"DJVU {page.stem}\n")

        for dict_id in registry.list_all():
            if registry.is_sentinel(dict_id) or not registry.members_of(dict_id):
                continue
            dictionary_file = layout.dictionary_file(dict_id, registry.get(dict_id).params.extension)
            dictionary_file.write_text(f"DJBZ {dict_id}\n")
            registry.update_output(dict_id, dictionary_file)

        for page in pages:
            params = store.get(page)
            dictionary = registry.get(params.djbz_id)
            params.source_images = compute_source_images(page, layout, suggestions)
            params.djvu = FileStamp.from_disk(layout.djvu_page(page))
            params.output_params = params.current_output_params(
                params.djbz_id, dictionary.revision, dictionary.params
            )
            store.set(page, params)

        return layout, registry, store, suggestions, pages

    return _published
