"""
CLI entry point — argument parsing and the parse / stats / apply / query
commands.
"""

import argparse
import json
import sys

from .cli_display import (
    color_enabled, format_apply_report, format_change_set, format_statistics,
    log, print_report, setup_logger, token_summary_line, token_tracker,
)
from .config import PROVIDERS, Config
from .editing import (
    EditApplicator, EditScriptParser, change_set_to_dict, compute_statistics,
)
from .errors import (
    EXIT_APPLY, EXIT_FAILURE, EXIT_OK, EXIT_PARSE, ReviewerError, exit_code_for,
)
from .llm import CancellationToken, ContinuationCoordinator, create_client
from .prompts import EDIT_SCRIPT_SYSTEM_PROMPT, build_user_prompt


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise ReviewerError(f"Cannot read {path}: {e}") from e


def _parse_script(cfg: Config, path: str):
    return EditScriptParser(cfg.MAX_VERBATIM_LINES).parse(_read_text(path))


# ── Commands ──

def cmd_parse(args, cfg: Config) -> int:
    change_set = _parse_script(cfg, args.script)
    if args.json:
        print_report(json.dumps(change_set_to_dict(change_set), indent=2))
    else:
        print_report(format_change_set(change_set, color=args.color))
    if args.strict and change_set.parse_errors:
        return EXIT_PARSE
    return EXIT_OK


def cmd_stats(args, cfg: Config) -> int:
    stats = compute_statistics(_parse_script(cfg, args.script))
    if args.json:
        print_report(json.dumps(stats.to_dict(), indent=2))
    else:
        print_report(format_statistics(stats, color=args.color))
    return EXIT_OK


def cmd_apply(args, cfg: Config) -> int:
    change_set = _parse_script(cfg, args.script)
    if args.only:
        bad = [i for i in args.only if not 0 <= i < len(change_set.changes)]
        if bad:
            raise ReviewerError(
                f"--only index out of range: {bad} "
                f"(script has {len(change_set.changes)} change(s))")
        change_set = change_set.subset(args.only)

    if args.overwrite:
        cfg.ALLOW_OVERWRITE = True
    applicator = EditApplicator.from_config(cfg, repo_root=args.repo)

    if args.dry_run:
        report = applicator.dry_run_change_set(change_set)
    else:
        report = applicator.apply_change_set(change_set)

    print_report(format_apply_report(report, color=args.color))
    return EXIT_OK if report.success else EXIT_APPLY


def cmd_query(args, cfg: Config) -> int:
    cfg.validate(require_api_key=True)
    prompt = _read_text(args.prompt_file)
    if args.files:
        prompt = build_user_prompt({p: _read_text(p) for p in args.files},
                                   instructions=prompt)
    system = _read_text(args.system) if args.system else EDIT_SCRIPT_SYSTEM_PROMPT

    client = create_client(cfg)
    coordinator = ContinuationCoordinator(
        client,
        timeout=cfg.QUERY_TIMEOUT,
        max_continuations=cfg.MAX_CONTINUATIONS,
    )
    log.info(f"[Query] provider={cfg.PROVIDER} model={client.model}")

    out = open(args.output, "w", encoding="utf-8") if args.output else sys.stdout
    cancel = CancellationToken()
    try:
        def on_token(text: str) -> None:
            out.write(text)
            out.flush()

        try:
            result = coordinator.run(system, prompt, on_token=on_token, cancel_token=cancel)
        except KeyboardInterrupt:
            cancel.cancel()
            log.warning("[Query] Interrupted by user")
            return 130
    finally:
        if out is not sys.stdout:
            out.close()

    if out is sys.stdout:
        sys.stdout.write("\n")
    sys.stderr.write(f"[{result.turns} turn(s), stop={result.stop_reason}] "
                     f"{token_summary_line()}\n")
    return EXIT_OK


# ── Argument parsing ──

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llm-reviewer",
        description="Parse, score and apply LLM code-review edit scripts")
    parser.add_argument("--config", default=None,
                        help="Path to .llm_reviewer.yaml (default: search CWD, then home)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Also log to stderr")
    parser.add_argument("--no-color", action="store_true",
                        help="Disable ANSI colours")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("parse", help="Parse an edit script and list its changes")
    p.add_argument("script", help="Edit script file ('-' for stdin)")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.add_argument("--strict", action="store_true",
                   help="Exit with status 3 when any change block was dropped")
    p.set_defaults(func=cmd_parse)

    p = sub.add_parser("stats", help="Score an edit script and recommend a strategy")
    p.add_argument("script", help="Edit script file ('-' for stdin)")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("apply", help="Apply an edit script to a working tree")
    p.add_argument("script", help="Edit script file ('-' for stdin)")
    p.add_argument("--repo", default=".", help="Repository root (default: CWD)")
    p.add_argument("--only", type=int, nargs="+", metavar="N",
                   help="Apply only the changes with these indices (see 'parse')")
    p.add_argument("--overwrite", action="store_true",
                   help="Let create_file replace existing files")
    p.add_argument("--dry-run", action="store_true",
                   help="Validate without writing")
    p.set_defaults(func=cmd_apply)

    p = sub.add_parser("query", help="Ask the model for an edit script")
    p.add_argument("prompt_file", help="User prompt file ('-' for stdin)")
    p.add_argument("--files", nargs="+", metavar="PATH",
                   help="Source files to include with line numbers")
    p.add_argument("--system", default=None,
                   help="System prompt file (default: built-in edit-script prompt)")
    p.add_argument("--output", "-o", default=None, help="Write the reply here")
    p.add_argument("--provider", choices=PROVIDERS, default=None)
    p.add_argument("--model", default=None)
    p.add_argument("--timeout", type=float, default=None,
                   help="Deadline for the whole query in seconds")
    p.set_defaults(func=cmd_query)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        # ── 0. Load config ──
        cfg = Config.load(args.config)
        cfg.override(
            provider=getattr(args, "provider", None),
            model=getattr(args, "model", None),
            query_timeout=getattr(args, "timeout", None),
        )
        cfg.validate()
        token_tracker.pricing = cfg.PRICING
        setup_logger(cfg.LOG_DIR, verbose=args.verbose)
        args.color = not args.no_color and color_enabled()

        return args.func(args, cfg)
    except ReviewerError as e:
        log.error(f"{type(e).__name__}: {e}")
        sys.stderr.write(f"error: {e}\n")
        return exit_code_for(e)
    except OSError as e:
        log.error(f"I/O error: {e}")
        sys.stderr.write(f"error: {e}\n")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
