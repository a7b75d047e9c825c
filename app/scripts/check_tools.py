"""
Report which scanning engines are installed. Run from project root:
  python -m app.scripts.check_tools [--strict]
With --strict the exit code is 1 when any engine not listed in SKIP_TOOLS is missing,
so it can gate a container build.
"""
import argparse
import sys

from app.core.config import get_settings
from app.services.scanners import build_scanners


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check which scanning engines are on PATH.")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit 1 if an engine that is not skipped is missing.",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    skipped = set(settings.SKIP_TOOLS)
    missing = []
    for scanner in build_scanners(settings):
        path = scanner.locate()
        if path:
            print(f"{scanner.tool:<10} installed  {path}")
        elif scanner.tool in skipped:
            print(f"{scanner.tool:<10} missing    (skipped by SKIP_TOOLS)")
        else:
            print(f"{scanner.tool:<10} missing")
            missing.append(scanner.tool)

    if missing and args.strict:
        print(f"Missing engines: {', '.join(missing)}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
