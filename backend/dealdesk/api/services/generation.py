from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from dealdesk.auth import Caller
from dealdesk.config import settings
from dealdesk.db import (
    abandon_artifact_reservation,
    finalize_artifact,
    get_opportunity,
    list_inputs,
    release_artifact_reservation,
    reserve_artifact_version,
)
from dealdesk.dsp import CompletionClient, DspDraftingLoop
from dealdesk.errors import InsufficientCorpus, NoInputs, NotFound, PersistenceError, StorageConflict, StorageError
from dealdesk.export.rendering import render_document
from dealdesk.parsers import PDF_CONTENT_TYPE, TextExtractor
from dealdesk.storage import ObjectStorage, artifact_storage_path

logger = logging.getLogger("dealdesk.generation")

DSP_ARTIFACT_TYPE = "DSP"
DSP_ARTIFACT_NAME = "Deal Strategy Plan"

CompletionClientGetter = Callable[[], CompletionClient]
StorageGetter = Callable[[], ObjectStorage]
TextExtractorGetter = Callable[[], TextExtractor]


@dataclass(frozen=True)
class Corpus:
    text: str
    input_names: list[str]
    extracted_chars: int
    skipped_inputs: list[str]


def build_corpus(
    inputs: list[dict[str, object]],
    *,
    storage: ObjectStorage,
    extractor: TextExtractor,
) -> Corpus:
    """Download and extract each input in order, skipping the ones that fail."""

    blocks: list[str] = []
    input_names: list[str] = []
    skipped: list[str] = []
    extracted_chars = 0

    for item in inputs:
        name = str(item["input_name"])
        input_names.append(name)
        try:
            content = storage.download(bucket=settings.inputs_bucket, path=str(item["storage_path"]))
        except StorageError as exc:
            logger.warning(
                "dsp_input_download_failed",
                extra={"event": "dsp_input_download_failed", "input_id": item["input_id"], "error": str(exc)},
            )
            skipped.append(name)
            continue

        result = extractor.parse(content=content, file_name=name, content_type=PDF_CONTENT_TYPE)
        text = result.text.strip()
        if result.error or not text:
            logger.warning(
                "dsp_input_extraction_failed",
                extra={
                    "event": "dsp_input_extraction_failed",
                    "input_id": item["input_id"],
                    "parser_id": result.parser_id,
                    "error": result.error or "no extractable text",
                },
            )
            skipped.append(name)
            continue

        extracted_chars += len(text)
        blocks.append(f"=== INPUT: {name} ===\n{text}")
        logger.info(
            "dsp_input_extracted",
            extra={"event": "dsp_input_extracted", "input_id": item["input_id"], "chars": len(text)},
        )

    return Corpus(
        text="\n\n".join(blocks),
        input_names=input_names,
        extracted_chars=extracted_chars,
        skipped_inputs=skipped,
    )


def _retire_reservation(reservation: dict[str, object], *, storage_path: str, error: Exception) -> None:
    artifact_id = int(reservation["artifact_id"])
    logger.error(
        "dsp_artifact_abandoned",
        extra={
            "event": "dsp_artifact_abandoned",
            "opportunity_id": reservation["opportunity_id"],
            "artifact_id": artifact_id,
            "version": reservation["version"],
            "storage_path": storage_path,
            "error": str(error),
        },
    )
    try:
        abandon_artifact_reservation(artifact_id, storage_path=storage_path)
    except PersistenceError:
        logger.exception(
            "dsp_artifact_abandon_failed",
            extra={"event": "dsp_artifact_abandon_failed", "artifact_id": artifact_id},
        )


def generate_deal_strategy_plan(
    opportunity_id: int,
    caller: Caller,
    *,
    get_ai_gateway: CompletionClientGetter,
    get_storage: StorageGetter,
    get_text_extractor: TextExtractorGetter,
) -> dict[str, object]:
    started = time.perf_counter()

    opportunity = get_opportunity(opportunity_id)
    if opportunity is None:
        raise NotFound(f"Opportunity {opportunity_id} not found.")

    inputs = list_inputs(opportunity_id)
    if not inputs:
        raise NoInputs(
            "No documents have been uploaded for this opportunity.",
            details="Upload at least one PDF before generating the Deal Strategy Plan.",
        )

    storage = get_storage()
    corpus = build_corpus(inputs, storage=storage, extractor=get_text_extractor())
    if corpus.extracted_chars < settings.dsp_min_corpus_chars:
        raise InsufficientCorpus(
            "The uploaded documents do not contain enough text to generate the Deal Strategy Plan.",
            details={
                "extracted_chars": corpus.extracted_chars,
                "min_chars": settings.dsp_min_corpus_chars,
                "skipped_inputs": corpus.skipped_inputs,
            },
        )

    loop = DspDraftingLoop(
        get_ai_gateway(),
        max_attempts=settings.dsp_max_attempts,
        language=settings.dsp_output_language,
    )
    outcome = loop.run(corpus=corpus.text, opportunity_id=opportunity_id, input_names=corpus.input_names)

    rendered = render_document(
        outcome.document,
        str(opportunity["opportunity_name"]),
        settings.dsp_output_format,
        generated_at=datetime.now(timezone.utc),
    )

    storage.ensure_bucket(settings.artifacts_bucket)
    reservation = reserve_artifact_version(
        opportunity_id=opportunity_id,
        artifact_type=DSP_ARTIFACT_TYPE,
        artifact_name=DSP_ARTIFACT_NAME,
        generated_by=caller.display_name,
    )
    artifact_id = int(reservation["artifact_id"])
    version = int(reservation["version"])
    storage_path = artifact_storage_path(opportunity_id, version, rendered.extension)

    try:
        storage.upload(
            bucket=settings.artifacts_bucket,
            path=storage_path,
            content=rendered.encode(),
            content_type=rendered.content_type,
        )
    except StorageConflict as exc:
        # The path is already taken, so this version can never be uploaded.
        _retire_reservation(reservation, storage_path=storage_path, error=exc)
        raise
    except Exception:
        try:
            release_artifact_reservation(artifact_id)
        except PersistenceError:
            logger.exception(
                "dsp_reservation_release_failed",
                extra={"event": "dsp_reservation_release_failed", "artifact_id": artifact_id},
            )
        raise

    # The object is stored from here on, so failures retire the version.
    try:
        artifact_url = storage.create_signed_url(
            bucket=settings.artifacts_bucket,
            path=storage_path,
            expires_in=settings.artifact_signed_url_ttl_seconds,
        )
        artifact = finalize_artifact(artifact_id, artifact_url=artifact_url, storage_path=storage_path)
    except Exception as exc:
        _retire_reservation(reservation, storage_path=storage_path, error=exc)
        raise

    logger.info(
        "dsp_generated",
        extra={
            "event": "dsp_generated",
            "opportunity_id": opportunity_id,
            "artifact_id": artifact_id,
            "version": version,
            "attempts": outcome.attempts,
            "output_format": rendered.extension,
            "inputs_total": len(inputs),
            "inputs_skipped": len(corpus.skipped_inputs),
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return {
        "success": True,
        "artifact_id": artifact["artifact_id"],
        "artifact_url": artifact["artifact_url"],
        "version": artifact["version"],
        "storage_path": artifact["storage_path"],
        "attempts": outcome.attempts,
        "message": "Deal Strategy Plan generated successfully.",
    }
