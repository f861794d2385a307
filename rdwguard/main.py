"""
RDW Guard - Main entry point
Runs the avatar guard headless against a redirection source
"""

import sys
import argparse


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rdwguard",
        description="Keep a redirected-walking avatar rig consistent every frame")
    parser.add_argument("--config", help="Path to the JSON configuration file")
    parser.add_argument("--frames", type=int, default=None,
                        help="Stop after this many frames (default: run until interrupted)")
    parser.add_argument("--source", choices=["simulated", "steamvr"], default=None,
                        help="Redirection source (overrides redirection.source)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.frames is not None and args.frames <= 0:
        print("❌ --frames must be a positive integer")
        return 2

    from rdwguard.bin.rdwguard_app import RDWGuardApplication, setup_logging
    setup_logging()

    print("🚀 Starting RDW Guard...")
    app = RDWGuardApplication(config_file=args.config, max_frames=args.frames, source=args.source)
    exit_code = app.run()
    print(f"📤 RDW Guard finished with code: {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
