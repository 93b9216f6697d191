"""Human-readable rendering of progress views.

Everything here is a total, side-effect free function of a view: no
exceptions, no I/O. Strings are English only.
"""

import math

from jobtrack.progress import OverallStatus, ProgressView, StageView
from jobtrack.records import JobStatus
from jobtrack.stages import Stage, all_stages

_RUNNING_MESSAGES: dict[Stage, str] = {
    Stage.INGEST: "Uploading document...",
    Stage.OCR: "Performing OCR analysis...",
    Stage.EMBED: "Creating AI embeddings...",
}

_STAGE_LABELS: dict[Stage, str] = {
    Stage.INGEST: "Upload",
    Stage.OCR: "OCR Analysis",
    Stage.EMBED: "AI Embedding",
}

_BADGES: dict[JobStatus, str] = {
    JobStatus.QUEUED: "Queued",
    JobStatus.RUNNING: "Running",
    JobStatus.DONE: "Complete",
    JobStatus.ERROR: "Failed",
}


def describe(view: ProgressView) -> str:
    """Return a one-line status sentence for ``view``.

    While in progress, the sentence names the first running stage in
    pipeline order.
    """
    status = view.overall_status
    if status is OverallStatus.NOT_STARTED:
        return "Waiting to start processing..."
    if status is OverallStatus.IN_PROGRESS:
        for stage in all_stages():
            stage_view = view.stages.get(stage)
            if stage_view is not None and stage_view.status is JobStatus.RUNNING:
                return _RUNNING_MESSAGES.get(stage, "Processing document...")
        return "Processing document..."
    if status is OverallStatus.COMPLETED:
        return "Document processing complete"
    if status is OverallStatus.ERROR:
        return f"Error: {view.error or 'Unknown error occurred'}"
    return "Unknown status"


def stage_label(stage: Stage) -> str:
    return _STAGE_LABELS.get(stage, str(stage.value).title())


def status_badge(stage_view: StageView) -> str:
    """Short badge text for a stage; unrecognized statuses show verbatim."""
    return _BADGES.get(stage_view.status, stage_view.raw_status)


def format_duration(stage_view: StageView) -> str | None:
    """Whole seconds the stage took, e.g. ``"12s"``, or None if not finished."""
    duration = stage_view.duration
    if duration is None:
        return None
    return f"{math.floor(duration.total_seconds())}s"


def summary_lines(view: ProgressView) -> list[str]:
    """Render a view as plain-text lines for terminals and logs."""
    lines = [
        f"{view.progress_percentage}% ({view.completed_stages}/{view.total_stages} stages)",
        describe(view),
    ]
    for stage in all_stages():
        stage_view = view.stages.get(stage)
        if stage_view is None:
            continue
        line = f"  {stage_label(stage)}: {status_badge(stage_view)}"
        duration = format_duration(stage_view)
        if duration is not None:
            line += f" ({duration})"
        lines.append(line)
    if view.sync_error:
        lines.append(f"  (sync problem: {view.sync_error})")
    return lines
