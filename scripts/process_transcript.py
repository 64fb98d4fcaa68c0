"""
CLI tool to run the intake extraction pipeline on a transcript file.

Usage:
    python scripts/process_transcript.py <transcript.json> [--output result.json]

The transcript file holds ``{"segments": [{"speaker": 0, "content": "..."}]}``.
Turns are numbered from 0 for citation tracking unless --no-citations is given.

Examples:
    # Print the merged extraction for a transcript
    python scripts/process_transcript.py calls/intake-0412.json

    # Force small chunks to exercise the multi-chunk merge
    python scripts/process_transcript.py calls/intake-0412.json --max-chunk-tokens 2000 --overlap-tokens 200
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv
load_dotenv(".env.local")

from intake_pipeline.config import get_settings
from intake_pipeline.logging_config import setup_logging, get_logger
from intake_pipeline.schemas.transcript import Transcript
from intake_pipeline.services.pipeline import NoExtractableDataError, process_transcript

setup_logging()
logger = get_logger(__name__)


async def run(
    path: Path,
    output: Path | None = None,
    with_citations: bool = True,
    max_chunk_tokens: int | None = None,
    overlap_tokens: int | None = None,
) -> int:
    """Process one transcript file and print or write the result."""
    transcript = Transcript.model_validate_json(path.read_text(encoding="utf-8"))

    overrides = {}
    if max_chunk_tokens is not None:
        overrides["max_chunk_tokens"] = max_chunk_tokens
    if overlap_tokens is not None:
        overrides["overlap_tokens"] = overlap_tokens
    settings = get_settings().model_copy(update=overrides)

    turns = transcript.to_turns() if with_citations else None

    try:
        result = await process_transcript(
            transcript, turns, settings=settings, transcript_id=path.stem
        )
    except NoExtractableDataError as e:
        logger.error("transcript_extraction_failed", path=str(path), error=str(e))
        print(f"Extraction failed: {e}")
        return 1

    rendered = json.dumps(result.model_dump(mode="json", by_alias=True), indent=2)
    if output:
        output.write_text(rendered + "\n", encoding="utf-8")
        print(f"Wrote {output}")
    else:
        print(rendered)

    if result.summary and result.summary.is_partial:
        print(f"Warning: {result.summary.describe()}", file=sys.stderr)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Extract intake data from a call transcript")
    parser.add_argument("transcript", type=Path, help="Path to a transcript JSON file")
    parser.add_argument("--output", type=Path, help="Write the result here instead of stdout")
    parser.add_argument("--no-citations", action="store_true", help="Do not send turn ids to the model")
    parser.add_argument("--max-chunk-tokens", type=int, help="Override the chunk token budget")
    parser.add_argument("--overlap-tokens", type=int, help="Override the chunk overlap")

    args = parser.parse_args()

    if not args.transcript.is_file():
        parser.error(f"No such file: {args.transcript}")

    sys.exit(asyncio.run(run(
        path=args.transcript,
        output=args.output,
        with_citations=not args.no_citations,
        max_chunk_tokens=args.max_chunk_tokens,
        overlap_tokens=args.overlap_tokens,
    )))


if __name__ == "__main__":
    main()
