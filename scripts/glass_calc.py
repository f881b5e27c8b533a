#!/usr/bin/env python3
"""
Glass cutting calculator.

Evaluates width and height cutting formulas for a window, rounds the cut
sizes with the configured (or a named) rounding policy and prints the glass
area per piece and in total.

Usage:
    python3 scripts/glass_calc.py "(W - 4.75) / 2" "H - 5" 48 60 --quantity 2
    python3 scripts/glass_calc.py "W - 2" "H - 2" 1200 900 --input-unit mm --output-unit sqm
    python3 scripts/glass_calc.py "(W - 4.75) / 2" "H - 5" 48 60 --preset factory_cut --json
    python3 scripts/glass_calc.py "(W - 4.75) / 2" "H - 5" --try-samples
"""

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

W = 64


def _print_result(result: dict) -> None:
    unit = result["inputUnit"]
    area_unit = result["outputUnit"]
    rounding = result["rounding"]
    policy = rounding["mode"]
    if policy != "none":
        policy = f"{policy} {rounding['increment']} {rounding['unit'] or unit}"

    print()
    print("=" * W)
    print("GLASS CUTTING CALCULATION".center(W))
    print("=" * W)
    print(f"  Window           {result['windowWidth']} x {result['windowHeight']} {unit}")
    print(f"  Rounding         {policy}")
    print(f"  {'-' * (W - 4)}")
    print(f"  {'':<8} {'Formula':<22} {'Evaluated':>12} {'Cut size':>12}")
    print(
        f"  {'Width':<8} {result['widthFormula']:<22} "
        f"{result['adjustedWidth']:>12} {result['roundedWidth']:>12}"
    )
    print(
        f"  {'Height':<8} {result['heightFormula']:<22} "
        f"{result['adjustedHeight']:>12} {result['roundedHeight']:>12}"
    )
    print(f"  {'-' * (W - 4)}")
    print(f"  Area per piece   {result['areaPerPiece']} {area_unit}")
    print(f"  Quantity         {result['glassQuantity']}")
    print(f"  Total area       {result['totalArea']} {area_unit}")
    if result["billableTotalArea"] != result["totalArea"]:
        print(f"  Billable area    {result['billableTotalArea']} {area_unit}")
    print()


def _run_samples(args, glass) -> int:
    from fab_config.bridges import glass_rounding
    from fab_engines.glass import test_formula

    try:
        policy = glass_rounding(glass, args.preset)
    except KeyError as exc:
        print(f"  ERROR: {exc.args[0]}", file=sys.stderr)
        return 1
    trials = test_formula(
        args.width_formula,
        args.height_formula,
        input_unit=args.input_unit or glass.input_unit,
        output_unit=args.output_unit or glass.output_unit,
        rounding=policy,
    )
    print()
    print(f"  {'Window':<16} {'Cut width':>12} {'Cut height':>12} {'Area':>12}")
    failed = 0
    for trial in trials:
        window = f"{trial.window_width} x {trial.window_height}"
        if trial.result is None:
            failed += 1
            print(f"  {window:<16} ERROR: {trial.error}")
            continue
        print(
            f"  {window:<16} {str(trial.result.rounded_width):>12} "
            f"{str(trial.result.rounded_height):>12} {str(trial.result.area_per_piece):>12}"
        )
    print()
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Glass cutting size and area calculator")
    parser.add_argument("width_formula", help="Width formula, e.g. '(W - 4.75) / 2'")
    parser.add_argument("height_formula", help="Height formula, e.g. 'H - 5'")
    parser.add_argument("window_width", nargs="?", help="Window width")
    parser.add_argument("window_height", nargs="?", help="Window height")
    parser.add_argument("--quantity", "-q", type=int, default=1, help="Glass pieces")
    parser.add_argument("--input-unit", help="Dimension unit (default from config)")
    parser.add_argument("--output-unit", help="Area unit (default from config)")
    parser.add_argument("--preset", help="Named rounding preset, e.g. factory_cut")
    parser.add_argument("--billing", action="store_true", help="Apply the billing ladder")
    parser.add_argument("--config", help="Configuration set YAML")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--try-samples", action="store_true",
                        help="Evaluate the formulas against the sample windows")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log engine traces")
    args = parser.parse_args(argv)

    from fab_config import get_active_config
    from fab_kernel.exceptions import FabricationError
    from fab_kernel.logging_config import configure_logging
    from fab_services import boundary

    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        glass = get_active_config(args.config).glass
    except (OSError, KeyError, ValueError) as exc:
        print(f"  ERROR: cannot load configuration: {exc}", file=sys.stderr)
        return 1

    try:
        if args.try_samples:
            return _run_samples(args, glass)

        if args.window_width is None or args.window_height is None:
            parser.error("window_width and window_height are required")

        payload = {
            "widthFormula": args.width_formula,
            "heightFormula": args.height_formula,
            "windowWidth": args.window_width,
            "windowHeight": args.window_height,
            "glassQuantity": args.quantity,
            "inputUnit": args.input_unit,
            "outputUnit": args.output_unit,
            "roundingPreset": args.preset,
            "billingLadder": args.billing or glass.billing_ladder,
        }
        result = boundary.glass_area(payload, args.config)
    except FabricationError as exc:
        if args.json:
            print(json.dumps(boundary.error_response(exc), indent=2))
        else:
            print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        _print_result(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
