from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from clipping_pipeline.jobs.errors import JobNotFound, StylePreferencesError, SubmissionError
from clipping_pipeline.jobs.models import segments_from_list
from clipping_pipeline.runtime import build_pipeline
from clipping_pipeline.subtitles.compiler import compile_captions, write_ass
from clipping_pipeline.subtitles.preferences import parse_preferences


def _load_json(path: Path | None) -> dict | list | None:
    if path is None:
        return None
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _echo_json(obj) -> None:
    click.echo(json.dumps(obj, indent=2, sort_keys=True, default=str))


@click.command(name="submit")
@click.option("--url", default=None, help="Remote video URL.")
@click.option("--upload-key", default=None, help="Object key under the uploads dir.")
@click.option("--id", "job_id", default=None, help="Caller-supplied job id (idempotent).")
@click.option("--target-duration", type=float, default=60.0, show_default=True)
@click.option("--clip-count", type=int, default=5, show_default=True)
@click.option(
    "--prefs",
    "prefs_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON file with subtitle preferences.",
)
@click.option("--run/--no-run", default=True, show_default=True, help="Process in this process.")
def submit(
    url: str | None,
    upload_key: str | None,
    job_id: str | None,
    target_duration: float,
    clip_count: int,
    prefs_path: Path | None,
    run: bool,
) -> None:
    """
    Submit a job (and by default run it to completion here).
    """
    if bool(url) == bool(upload_key):
        raise click.UsageError("pass exactly one of --url or --upload-key")
    source = {"kind": "remote", "url": url} if url else {"kind": "upload", "object_key": upload_key}
    payload: dict = {
        "source": source,
        "target_duration_s": target_duration,
        "clip_count": clip_count,
        "metadata": {},
    }
    if job_id:
        payload["id"] = job_id
    prefs = _load_json(prefs_path)
    if prefs is not None:
        payload["metadata"]["subtitle_preferences"] = prefs

    p = build_pipeline()
    try:
        jid = p.orchestrator.submit(payload)
    except (SubmissionError, StylePreferencesError) as ex:
        raise click.ClickException(str(ex)) from ex
    click.echo(f"Job: {jid}")
    if run:
        asyncio.run(p.orchestrator.run_until_idle())
    _echo_json(p.orchestrator.status(jid))


@click.command(name="status")
@click.argument("job_id")
@click.option("--events", is_flag=True, default=False, help="Include lifecycle events.")
def status(job_id: str, events: bool) -> None:
    """Show a job's status."""
    p = build_pipeline()
    try:
        job = p.orchestrator.get_job(job_id)
    except JobNotFound as ex:
        raise click.ClickException(str(ex)) from ex
    out = job.status_view()
    if events:
        out["events"] = job.events
    _echo_json(out)


@click.command(name="cancel")
@click.argument("job_id")
def cancel(job_id: str) -> None:
    """Cancel a job that has not finished."""
    p = build_pipeline()
    ok = p.orchestrator.cancel(job_id)
    click.echo("canceled" if ok else "not canceled (unknown or already finished)")
    if not ok:
        raise SystemExit(1)


@click.command(name="captions")
@click.argument("transcript", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--offset", type=float, default=0.0, show_default=True)
@click.option(
    "--prefs",
    "prefs_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
)
@click.option(
    "--out",
    "out_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the .ass file here (default: stdout).",
)
def captions(transcript: Path, offset: float, prefs_path: Path | None, out_path: Path | None) -> None:
    """
    Compile a transcript JSON ([{start,end,text}] or {"segments": [...]}) to ASS.
    """
    raw = _load_json(transcript)
    items = raw.get("segments", []) if isinstance(raw, dict) else raw
    try:
        prefs = parse_preferences(_load_json(prefs_path))
    except StylePreferencesError as ex:
        raise click.ClickException(str(ex)) from ex
    script = compile_captions(segments_from_list(items), offset, prefs)
    if out_path is None:
        click.echo(script.render(), nl=False)
        return
    write_ass(script, out_path)
    click.echo(f"Wrote {out_path} ({len(script.events)} events)")


def add_commands(cli_group) -> None:
    cli_group.add_command(submit)
    cli_group.add_command(status)
    cli_group.add_command(cancel)
    cli_group.add_command(captions)


__all__ = ["add_commands", "submit", "status", "cancel", "captions"]
