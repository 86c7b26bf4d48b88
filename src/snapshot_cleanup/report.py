"""Plain-text rendering of a :class:`RunReport` for the summary email."""

import functools
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from .models import RunReport

DIVIDER = "-" * 60
DRY_RUN_BANNER = "*** DRY RUN: no snapshots were deleted, this report shows what would have been removed. ***"


@functools.lru_cache(maxsize=1)
def get_jinja_env() -> Environment:
    """Return a cached Jinja2 Environment for the report templates."""
    template_dir = Path(__file__).parent / "templates"
    return Environment(
        loader=FileSystemLoader(template_dir),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def render_report(run: RunReport) -> str:
    tpl = get_jinja_env().get_template("snapshot_report.txt.j2")
    return tpl.render(run=run, divider=DIVIDER, banner=DRY_RUN_BANNER)


def report_subject(run: RunReport) -> str:
    subject = f"Snapshot cleanup report ({run.now.strftime('%Y-%m-%d')})"
    if run.dry_run:
        return f"[DRY RUN] {subject}"
    return subject
