#!/usr/bin/env python3
"""Compile rule files + section manifest into one document with a TOC.

Parses every rule file in the rules directory (in parallel), validates them
against the section manifest, and renders the compiled Markdown document.
Fatal issues are printed to stderr and nothing is written (exit 1).
Warnings are printed but do not change the exit status unless
``--strict-warnings`` is given.

Examples:
  python3 scripts/compile_rules.py --rules-dir rules --output AGENTS.md

  python3 scripts/compile_rules.py --rules-dir rules \
    --manifest rules/_sections.md --metadata metadata.json --output AGENTS.md

  # Validate only, write the report as JSON:
  python3 scripts/compile_rules.py --rules-dir rules --check \
    --report-json plans/rules_report.json

  # Everything from a config file, flags override:
  python3 scripts/compile_rules.py --config rulebook.json --workers 4

The compiled document goes to stdout when no output path is configured;
human messages go to stderr.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

from rulebook.config import CompileConfig
from rulebook.io_utils import save_json
from rulebook.pipeline import CompileResult, run
from rulebook.renderer import write_document
from rulebook.rule_types import Issue, RenderError, ValidationReport

log = logging.getLogger("compile_rules")


def issue_to_dict(issue: Issue) -> dict[str, Any]:
    return {
        "kind": str(issue.kind),
        "message": issue.message,
        "source": issue.source,
        "subject": issue.subject,
        "severity": issue.severity,
    }


def report_to_dict(report: ValidationReport) -> dict[str, Any]:
    return {
        "ok": report.ok,
        "fatal_count": len(report.fatal),
        "warning_count": len(report.warning),
        "fatal": [issue_to_dict(i) for i in report.fatal],
        "warning": [issue_to_dict(i) for i in report.warning],
    }


def print_report(report: ValidationReport) -> None:
    for issue in report.warning:
        print(f"  warning: {issue.format()}", file=sys.stderr)
    if report.fatal:
        print(f"\nCompile failed with {len(report.fatal)} fatal issue(s):\n", file=sys.stderr)
        for issue in report.fatal:
            print(f"  {issue.format()}", file=sys.stderr)


def build_config(args: argparse.Namespace) -> CompileConfig:
    if args.config is not None:
        base = CompileConfig.from_file(args.config)
    elif args.rules_dir is not None:
        base = CompileConfig(rules_dir=args.rules_dir)
    else:
        raise ValueError("either --rules-dir or --config is required")
    return base.with_overrides(
        rules_dir=args.rules_dir,
        manifest_path=args.manifest,
        metadata_path=args.metadata,
        output_path=args.output,
        workers=args.workers,
        strict_warnings=True if args.strict_warnings else None,
        check_rule_template=False if args.no_template_checks else None,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Compile rule files into one document with a table of contents."
    )
    parser.add_argument("--rules-dir", type=Path, default=None, help="Directory of rule .md files")
    parser.add_argument(
        "--manifest", type=Path, default=None,
        help="Section manifest (.md or .json; default: <rules-dir>/_sections.md)",
    )
    parser.add_argument("--metadata", type=Path, default=None, help="metadata.json for the title block")
    parser.add_argument("--output", type=Path, default=None, help="Write the document here instead of stdout")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file")
    parser.add_argument("--workers", type=int, default=None, help="Parser worker threads (default: 8)")
    parser.add_argument("--check", action="store_true", help="Validate only; write no document")
    parser.add_argument("--report-json", type=Path, default=None, help="Write the validation report as JSON")
    parser.add_argument("--strict-warnings", action="store_true", help="Treat warnings as fatal")
    parser.add_argument(
        "--no-template-checks", action="store_true",
        help="Skip rule-template warnings (front matter, heading, explanation, examples)",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        config = build_config(args)
    except (OSError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    try:
        result: CompileResult = run(config)
    except RenderError as exc:
        print(f"\nCompile failed while rendering:\n\n  {exc.issue.format()}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as exc:
        # metadata.json missing, not valid JSON or not an object
        print(f"Cannot read document metadata: {exc}", file=sys.stderr)
        return 2

    if args.report_json is not None:
        save_json(report_to_dict(result.report), args.report_json)
        log.info("Wrote report to %s", args.report_json)

    print_report(result.report)
    if not result.ok:
        return 1
    if config.strict_warnings and result.report.warning:
        print(
            f"\nCompile failed: {len(result.report.warning)} warning(s) with --strict-warnings",
            file=sys.stderr,
        )
        return 1
    if args.check:
        log.info("Check passed (%d warnings)", len(result.report.warning))
        return 0

    if result.document is None or result.text is None:
        print("Compile failed: no document was produced", file=sys.stderr)
        return 1
    if config.output_path is not None:
        write_document(result.document, config.output_path)
        log.info("Wrote %s", config.output_path)
    else:
        sys.stdout.write(result.text)
        sys.stdout.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
