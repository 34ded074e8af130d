"""Run one real challenge-generation call through the Gemini-backed pipeline.

Usage example:
  python scripts/run_generate_challenge.py --language Python --level Beginner --topic strings --pretty
  python scripts/run_generate_challenge.py --answer-for challenge.json
  python scripts/run_generate_challenge.py --review-for submission.json
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from challenge_curator import AnswerRequest, ChallengePipeline, CuratorConfig, GeminiLLMClient, ReviewRequest


def load_dotenv(path: Path) -> None:
    """Export KEY=VALUE lines from `path`; variables already set win."""
    if not path.is_file():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.strip().partition("=")
        if not sep or not key or key.startswith("#"):
            continue
        os.environ.setdefault(key.strip(), value.strip().strip("\"'"))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate one coding challenge, answer or code review with Gemini.")
    parser.add_argument("--language", action="append", default=[], help="Preferred language; repeatable.")
    parser.add_argument("--level", help="Beginner, Intermediate, Advanced or Expert.")
    parser.add_argument("--topic", action="append", default=[], help="Topic hint; repeatable.")
    parser.add_argument("--answer-for", type=Path, help="Challenge JSON file to generate a solution for.")
    parser.add_argument(
        "--review-for", type=Path, help="Submission JSON (userCode, solutionCode, language, ...) to review."
    )
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")
    return parser.parse_args()


def main() -> None:
    load_dotenv(REPO_ROOT / ".env")
    args = parse_args()

    config = CuratorConfig.from_env()
    level = "WARNING" if config.log_level == "warn" else config.log_level.upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    pipeline = ChallengePipeline(llm_client=GeminiLLMClient.from_env(), config=config)

    if args.answer_for is not None:
        request = AnswerRequest.model_validate_json(args.answer_for.read_text(encoding="utf-8"))
        result = pipeline.generate_answer(request)
    elif args.review_for is not None:
        review_request = ReviewRequest.model_validate_json(args.review_for.read_text(encoding="utf-8"))
        result = pipeline.generate_review(review_request)
    else:
        result = pipeline.generate_challenge(
            {"languages": args.language, "level": args.level, "topics": args.topic}
        )

    payload = result.model_dump(mode="json", by_alias=True)
    if args.pretty:
        print(json.dumps(payload, indent=2, ensure_ascii=True))
    else:
        print(json.dumps(payload, ensure_ascii=True))


if __name__ == "__main__":
    main()
