#!/usr/bin/env python3
"""Extract one document and print its extraction and proposal as JSON.

Runs the same pipeline as mail intake (text acquisition, heuristics,
optional LLM normalization, proposal building) on a local file, without
storing anything.

Usage:
    python scripts/extract_document.py invoice.pdf
    python scripts/extract_document.py receipt.jpg --vendor ocrspace --lang dan+eng --llm
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from bilags.extraction.factory import create_normalization_provider
from bilags.extraction.service import heuristic_extraction, normalize_extraction
from bilags.ocr.factory import create_text_acquirer
from bilags.proposal.builder import ProposalBuilder
from bilags.shared.config import get_settings
from bilags.shared.errors import BilagsError

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Extract an invoice or receipt")
    parser.add_argument("file", type=Path, help="PDF, image or text file")
    parser.add_argument("--vendor", choices=["auto", "tesseract", "ocrspace"], default=None)
    parser.add_argument("--lang", default=None, help="OCR languages, e.g. eng or dan+eng")
    parser.add_argument("--llm", action="store_true", help="Run LLM normalization")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s: %(message)s")

    if not args.file.exists():
        logger.error(f"File not found: {args.file}")
        return 1

    try:
        text = create_text_acquirer(settings).extract_text(args.file, args.vendor, args.lang)
    except BilagsError as e:
        logger.error(f"Text extraction failed ({e.code}): {e.message}")
        return 2

    extraction = heuristic_extraction(text, settings)
    if args.llm:
        provider = create_normalization_provider(settings)
        extraction = normalize_extraction(provider, text, extraction, settings)

    proposal = ProposalBuilder(settings).build(extraction.header, extraction.lines)
    output = {
        "extracted": extraction.model_dump(mode="json", exclude={"raw_text"}),
        "proposal": proposal.model_dump(mode="json"),
    }
    json.dump(output, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
