"""
Command-line interface.

Usage:
    stance-cli diff LEFT RIGHT [--format F]   Diff the stances of two exported conversations
    stance-cli decay PATH [--threshold T]     Decay analysis for an exported conversation
    stance-cli demo                           Run a short simulated conversation
"""

from __future__ import annotations
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.stance_config import StanceConfig
from src.logging_utils import configure_logging
from stance_core.controller import Conversation, StanceController
from stance_core.exceptions import StanceError


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="stance-cli",
        description="Stance evolution - inspect exported conversations",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: $STANCE_LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", help="Commands")

    # diff
    p_diff = sub.add_parser("diff", help="Diff the stances of two exported conversations")
    p_diff.add_argument("left", help="Exported conversation JSON (left)")
    p_diff.add_argument("right", help="Exported conversation JSON (right)")
    p_diff.add_argument("--format", choices=["unified", "side-by-side", "tree"], default="unified",
                        help="Visualization type")
    p_diff.add_argument("--color", action="store_true", help="ANSI colors")

    # decay
    p_decay = sub.add_parser("decay", help="Decay analysis for an exported conversation")
    p_decay.add_argument("path", help="Exported conversation JSON")
    p_decay.add_argument("--threshold", type=float, default=None, help="Alert threshold (0-100)")
    p_decay.add_argument("--json", action="store_true", help="Print the model as JSON")

    # demo
    sub.add_parser("demo", help="Run a short simulated conversation")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        if args.command == "diff":
            return cmd_diff(args.left, args.right, args.format, args.color)
        if args.command == "decay":
            return cmd_decay(args.path, args.threshold, args.json)
        if args.command == "demo":
            return cmd_demo()
    except StanceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 0


def _load(path: str) -> Optional[Conversation]:
    p = Path(path)
    if not p.exists():
        print(f"No exported conversation at {path}", file=sys.stderr)
        return None
    return StanceController().import_conversation(p.read_text(encoding="utf-8"))


def cmd_diff(left_path: str, right_path: str, fmt: str = "unified", color: bool = False) -> int:
    from stance_core.diff import DiffConfig, StanceDiffEngine

    left = _load(left_path)
    right = _load(right_path)
    if left is None or right is None:
        return 1

    engine = StanceDiffEngine(DiffConfig(colorize=color))
    stance_diff = engine.diff(left.stance, right.stance)
    print(engine.visualize(stance_diff, fmt).content, end="")
    return 0


def cmd_decay(path: str, threshold: Optional[float] = None, as_json: bool = False) -> int:
    from stance_core.decay import DecayModelingEngine

    conversation = _load(path)
    if conversation is None:
        return 1

    engine = DecayModelingEngine(params=StanceConfig.decay_params(threshold))
    model = engine.create_model(conversation.id, conversation.stance)
    analysis = engine.analyze_decay(model.id)

    if as_json:
        print(json.dumps({"model": model.to_dict(), "analysis": analysis.to_dict()}, indent=2))
        return 0

    days = "never" if analysis.days_until_action == float("inf") else f"{analysis.days_until_action:.0f} days"
    print(f"Conversation: {conversation.id}")
    print(f"Overall health: {analysis.overall_health:.0f}")
    print(f"Mean decay rate: {analysis.decay_rate:.3f}/day")
    print(f"Action needed in: {days}")

    for label, fields in (
        ("Critical", analysis.critical_fields),
        ("Decaying", analysis.decaying_fields),
        ("Stable", analysis.stable_fields),
    ):
        if fields:
            print(f"\n{label}:")
            for f in fields:
                print(f"  - {f}")

    if model.recommendations:
        print("\nRecommendations:")
        for rec in model.recommendations:
            print(f"  [{rec.priority}] {rec.action}")
    return 0


def cmd_demo() -> int:
    from src.stance_service import StanceService

    print("=" * 50)
    print("Stance Evolution Demo")
    print("=" * 50)

    service = StanceService.from_runtime_config(use_db=False)
    conversation = service.start_conversation({"maxDriftPerTurn": 30, "driftBudget": 60})
    cid = conversation.id

    turns = [
        {"frame": "poetic"},
        {"values": {"curiosity": 85, "novelty": 75}},
        {"selfModel": "provocateur", "objective": "provocation"},
        {"frame": "mythic", "selfModel": "witness", "values": {"empathy": 90}},
        {"sentience": {"awarenessLevel": 60, "emergentGoals": ["understand the user"]}},
    ]

    print("\n--- Turns ---")
    for delta in turns:
        stance = service.apply(cid, delta)
        print(
            f"  v{stance.version}: frame={stance.frame.value} selfModel={stance.self_model.value} "
            f"drift={stance.cumulative_drift:.0f} turnsSinceShift={stance.turns_since_last_shift}"
        )

    print("\n--- Diff (start → now) ---")
    stance_diff = service.diff_versions(cid)
    print(service.diff_engine.visualize(stance_diff).content, end="")

    print("\n--- Rollback 2 ---")
    restored = service.rollback(cid, 2)
    print(f"  frame={restored.frame.value} version={restored.version}")

    print("\n--- Decay ---")
    report = service.decay_report(cid)
    for rec in report["recommendations"]:
        print(f"  [{rec['priority']}] {rec['action']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
