"""Command line entry point: chunk parsed documents, write the JSONL index, upsert embeddings."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

from lexqa.logging_config import configure_logging
from lexqa.settings import PROJECT_ROOT, get_settings, load_dotenv_files
from lexqa.telemetry import traced_duration

from .models import Chunk
from .pipeline import build_chunks_for_directory, index_chunks, write_chunks_jsonl

LOGGER = logging.getLogger(__name__)

DEFAULT_INPUT_DIR = "json_outputs_folder"
DEFAULT_OUTPUT_PATH = "data/chunks.jsonl"


def resolve_input_dir(explicit: str | None) -> Optional[Path]:
    """Return the first existing input directory among the configured candidates."""

    candidates: List[Path] = []
    if explicit:
        candidates.append(Path(explicit))
    else:
        candidates.append(Path(os.getenv("JSON_INPUT_DIR") or DEFAULT_INPUT_DIR))
        candidates.append(PROJECT_ROOT.parent / DEFAULT_INPUT_DIR)
    for candidate in candidates:
        if candidate.is_dir():
            return candidate
    LOGGER.error(
        "JSON input directory not found. Set JSON_INPUT_DIR. Tried: %s",
        ", ".join(str(candidate) for candidate in candidates),
    )
    return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--input-dir", help="Directory of parsed document JSON files (default: $JSON_INPUT_DIR)")
    parser.add_argument("--output", help="Chunk JSONL output path (default: $CHUNKS_OUT or data/chunks.jsonl)")
    parser.add_argument(
        "--skip-index",
        action="store_true",
        help="Only write the JSONL file; do not embed or upsert.",
    )
    return parser


async def _index(chunks: Sequence[Chunk]) -> int:
    from lexqa.embeddings import get_embedding_model
    from lexqa.vectorstore import get_dense_store, get_sparse_store

    settings = get_settings()
    return await index_chunks(
        chunks,
        embedding_model=get_embedding_model(),
        dense_store=get_dense_store(),
        sparse_store=get_sparse_store(),
        batch_size=settings.embed_batch,
    )


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv_files()
    configure_logging()
    args = build_parser().parse_args(argv)

    input_dir = resolve_input_dir(args.input_dir)
    if input_dir is None:
        return 1
    output_path = Path(args.output or os.getenv("CHUNKS_OUT") or DEFAULT_OUTPUT_PATH)

    settings = get_settings()
    results = build_chunks_for_directory(input_dir, pdf_base_url=settings.pdf_base_url)
    if not results:
        print(f"No JSON files found in {input_dir}")
        return 0

    chunks = [chunk for result in results for chunk in result.chunks]
    failed = [result for result in results if not result.ok]
    with traced_duration("ingest.write_jsonl", logger=LOGGER, path=str(output_path), chunks=len(chunks)):
        write_chunks_jsonl(chunks, output_path)
    print(f"Prepared {len(chunks)} chunks from {len(results) - len(failed)} documents into {output_path}.")
    for result in failed:
        print(f"Failed: {result.file_name}: {result.error}")

    if not args.skip_index and chunks:
        print(f"Writing embeddings in batches of {settings.embed_batch}.")
        with traced_duration("ingest.index", logger=LOGGER, chunks=len(chunks)):
            indexed = asyncio.run(_index(chunks))
        print(f"Upserted {indexed}/{len(chunks)}")

    print("Ingestion complete.")
    return 0


__all__ = ["build_parser", "main", "resolve_input_dir"]
