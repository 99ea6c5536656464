"""knowledge-prism command line."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from prism import __version__
from prism.config import ConfigError, load_config
from prism.core.perspectives import STAGES, expand_key_line, fill_perspective, new_perspective
from prism.core.pipeline import run_pipeline
from prism.core.scaffold import init_prism
from prism.core.status import format_status, get_status
from prism.lib.llm_clients import create_caller_from_config, get_token_usage, reset_token_usage
from prism.lib.logger import console_error

logger = logging.getLogger(__name__)


def cmd_init(target: str, name: Optional[str]) -> int:
    try:
        result = init_prism(target, name=name)
    except FileExistsError as e:
        console_error(str(e))
        return 1
    print(f"\nInitialised knowledge prism: {result.name}")
    print(f"  Path: {result.base_dir}")
    for rel in result.files:
        print(f"  + {rel}")
    print("\nNext steps:")
    print("  1. Set api.baseUrl / api.model in .knowledgeprism.json (or KNOWLEDGE_PRISM_API_* in .env)")
    print("  2. Write notes under journal/YYYY-MM-DD/")
    print("  3. Run `knowledge-prism process`")
    return 0


def cmd_process(args: argparse.Namespace) -> int:
    base_dir, config = load_config()
    reset_token_usage()
    call_agent = create_caller_from_config(config)
    summary = run_pipeline(
        base_dir,
        config,
        call_agent,
        dry_run=args.dry_run,
        auto_write=args.auto_write,
        max_stage=args.stage,
        only_file=args.file,
        verbose=args.verbose,
        force_synthesis=args.force_synthesis,
    )
    usage = get_token_usage()
    if usage["calls"]:
        print(f"  Model calls: {usage['calls']} "
              f"(in {usage['input_tokens']} / out {usage['output_tokens']} tokens)")
    if summary.warnings:
        print(f"  {len(summary.warnings)} warning(s); see above.")
    return 0


def cmd_status(as_json: bool) -> int:
    base_dir, config = load_config()
    status = get_status(base_dir)
    if as_json:
        print(json.dumps(status.as_dict(), indent=2, ensure_ascii=False))
        return 0
    print()
    for line in format_status(config.name, base_dir, status):
        print(line)
    print()
    return 0


def cmd_new_perspective(slug: str, name: Optional[str], base_dir: Optional[str]) -> int:
    root = Path(base_dir) if base_dir else load_config()[0]
    try:
        created = new_perspective(root, slug, name=name)
    except (ValueError, FileNotFoundError, FileExistsError) as e:
        console_error(str(e))
        return 1
    print(f"\nCreated perspective: {created.dir_name}")
    print(f"  Path: {created.perspective_dir}")
    print("\nNext steps:")
    print(f"  1. knowledge-prism fill-perspective {created.dir_name} --stage scqa")
    print(f"  2. knowledge-prism fill-perspective {created.dir_name} --stage keyline")
    print(f"  3. knowledge-prism expand-kl {created.dir_name} KL01")
    print(f"  4. Complete {created.dir_name}/validation.md")
    return 0


def _report(result) -> int:
    if not result.success:
        console_error(f"{result.message} [{result.error}]")
        return 1
    print(f"  {result.message}")
    return 0


def cmd_fill_perspective(perspective: str, stage: str, write: bool) -> int:
    base_dir, config = load_config()
    result = fill_perspective(base_dir, perspective, stage,
                              create_caller_from_config(config), auto_write=write)
    if result.success and not write and result.content:
        print(result.content)
    return _report(result)


def cmd_expand_kl(perspective: str, kl_id: str, write: bool) -> int:
    base_dir, config = load_config()
    result = expand_key_line(base_dir, perspective, kl_id,
                             create_caller_from_config(config), auto_write=write)
    if result.success and not write and result.content:
        print(result.content)
    return _report(result)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knowledge-prism",
        description="Distil journals into atoms, groups and a synthesis",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    # init <dir>
    init_parser = subparsers.add_parser("init", help="Create a new knowledge prism")
    init_parser.add_argument("dir", nargs="?", default=".", help="Target directory")
    init_parser.add_argument("--name", help="Knowledge prism name (default: directory name)")

    # process
    process_parser = subparsers.add_parser("process", help="Run the incremental pipeline")
    process_parser.add_argument("--dry-run", action="store_true",
                                help="Build prompts and report sizes; no model calls or writes")
    process_parser.add_argument("--auto-write", action="store_true",
                                help="Write groups and synthesis instead of printing suggestions")
    process_parser.add_argument("--stage", type=int, choices=[1, 2, 3], default=3,
                                help="Last stage to run: 1 atoms, 2 groups, 3 synthesis")
    process_parser.add_argument("--file", help="Only process this journal file name")
    process_parser.add_argument("--verbose", action="store_true",
                                help="Show prompt previews and debug logging")
    process_parser.add_argument("--force-synthesis", action="store_true",
                                help="Run stage 3 even when the synthesis is current")

    # status
    status_parser = subparsers.add_parser("status", help="Show processing status")
    status_parser.add_argument("--json", action="store_true", help="JSON output")

    # new-perspective <slug>
    np_parser = subparsers.add_parser("new-perspective", help="Create a perspective from the template")
    np_parser.add_argument("slug", help="Short slug used in the directory name (e.g. blog-post)")
    np_parser.add_argument("--name", help="Display name (default: slug)")
    np_parser.add_argument("--base-dir", help="Knowledge prism root (overrides config lookup)")

    # fill-perspective <perspective>
    fill_parser = subparsers.add_parser("fill-perspective", help="Generate SCQA or Key Lines")
    fill_parser.add_argument("perspective", help="Perspective directory name (e.g. P01-blog-post)")
    fill_parser.add_argument("--stage", required=True, choices=list(STAGES), help="What to generate")
    fill_parser.add_argument("--no-write", action="store_true", help="Print instead of writing")

    # expand-kl <perspective> <kl-id>
    kl_parser = subparsers.add_parser("expand-kl", help="Expand one Key Line into its own file")
    kl_parser.add_argument("perspective", help="Perspective directory name")
    kl_parser.add_argument("kl_id", help="Key Line id (e.g. KL01)")
    kl_parser.add_argument("--no-write", action="store_true", help="Print instead of writing")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == "init":
            return cmd_init(args.dir, args.name)
        elif args.command == "process":
            return cmd_process(args)
        elif args.command == "status":
            return cmd_status(args.json)
        elif args.command == "new-perspective":
            return cmd_new_perspective(args.slug, args.name, args.base_dir)
        elif args.command == "fill-perspective":
            return cmd_fill_perspective(args.perspective, args.stage, not args.no_write)
        elif args.command == "expand-kl":
            return cmd_expand_kl(args.perspective, args.kl_id, not args.no_write)
    except ConfigError as e:
        console_error(str(e))
        return 1
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
