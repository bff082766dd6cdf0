"""
Command-line entry point.

Usage:
    edgar-ask "Show me Apple's last 2 filings"
    edgar-ask "Compare Apple and Microsoft revenue" --json
    edgar-ask "What are Tesla's main risks?" --deadline 30 --no-tool-router -v
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from universal_edgar.config import PipelineConfig
from universal_edgar.errors import ConfigurationError
from universal_edgar.observability import setup_structured_logging
from universal_edgar.orchestrator import Orchestrator
from universal_edgar.output import answer_to_json, answer_to_markdown


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Answer natural-language questions about public companies from SEC EDGAR"
    )
    parser.add_argument("question", help="Question to answer")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full structured answer as JSON",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Overall time limit in seconds (default: EDGAR_DEADLINE_SECONDS or 60)",
    )
    parser.add_argument(
        "--no-tool-router",
        action="store_true",
        help="Skip tool routing and use direct extraction only",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args(argv)

    setup_structured_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    config = PipelineConfig.from_env()
    if args.no_tool_router:
        config.use_tool_router = False

    try:
        orchestrator = Orchestrator.from_config(config)
    except ConfigurationError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return 2

    answer = orchestrator.process(args.question, deadline_seconds=args.deadline)
    print(answer_to_json(answer) if args.json else answer_to_markdown(answer))
    return 0 if answer.metadata.pipeline_state == "done" else 1


if __name__ == "__main__":
    sys.exit(main())
