"""Registry of the document processing pipeline stages.

The pipeline is fixed at three stages that run in order: a document is
ingested, OCR'd, then embedded. Anything that reports a stage outside this
set is ignored by the aggregator so that newer backends can add stages
without breaking older clients.
"""

from enum import Enum


class Stage(str, Enum):
    """A processing pipeline stage, in pipeline order."""

    INGEST = "ingest"
    """Upload and metadata ingestion."""

    OCR = "ocr"
    """OCR and page annotation."""

    EMBED = "embed"
    """Chunking and embedding for retrieval."""


_STAGE_ORDER: tuple[Stage, ...] = (Stage.INGEST, Stage.OCR, Stage.EMBED)
_STAGE_VALUES = frozenset(stage.value for stage in _STAGE_ORDER)


def all_stages() -> tuple[Stage, ...]:
    """Return every stage in pipeline order."""
    return _STAGE_ORDER


def is_known_stage(name: object) -> bool:
    """Return True if ``name`` is a stage (or stage name) in the registry."""
    if isinstance(name, Stage):
        return True
    return isinstance(name, str) and name in _STAGE_VALUES


def next_stage(stage: Stage) -> Stage | None:
    """Return the stage that follows ``stage``, or None for the last one."""
    index = _STAGE_ORDER.index(stage)
    if index + 1 < len(_STAGE_ORDER):
        return _STAGE_ORDER[index + 1]
    return None


def stages_before(stage: Stage) -> tuple[Stage, ...]:
    """Return the stages that run before ``stage``."""
    return _STAGE_ORDER[: _STAGE_ORDER.index(stage)]
