#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
import warnings

warnings.filterwarnings("ignore")
logging.basicConfig(stream=sys.stderr, level=logging.ERROR)
logging.getLogger("ultralytics").setLevel(logging.ERROR)

from caption_stack.api import caption_image, pipeline_info
from caption_stack.config import PipelineConfig
from caption_stack.confidence import confidence_level


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="On-device image caption CLI")
    sub = parser.add_subparsers(dest="cmd", required=True)

    caption_cmd = sub.add_parser("caption", help="Caption one image")
    caption_cmd.add_argument("path", help="Image file path")
    caption_cmd.add_argument("--json", action="store_true", help="Print the full result with signal breakdown")
    caption_cmd.add_argument("--always-ocr", action="store_true")
    caption_cmd.add_argument("--threshold", type=float, default=None, help="Quality gate threshold")
    caption_cmd.add_argument("--max-words", type=int, default=None)
    caption_cmd.add_argument("--debug", action="store_true")

    sub.add_parser("info", help="Show pipeline version and model configuration")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    overrides: dict = {}
    if getattr(args, "threshold", None) is not None:
        overrides["quality_gate_threshold"] = args.threshold
    if getattr(args, "max_words", None) is not None:
        overrides["max_caption_words"] = max(1, args.max_words)
    if getattr(args, "debug", False):
        overrides["debug_mode"] = True
    return PipelineConfig(**overrides)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        cfg = build_config(args)
    except ValueError as exc:
        raise SystemExit(str(exc))

    if getattr(args, "debug", False):
        logging.getLogger("caption_stack").setLevel(logging.INFO)

    if args.cmd == "caption":
        result = caption_image(args.path, always_ocr=args.always_ocr, cfg=cfg)
        if args.json:
            out = result
        else:
            gate = result["signal_breakdown"]["quality_gate"]
            out = {
                "caption": result["caption_text"],
                "confidence": round(result["confidence_score"], 4),
                "confidence_level": confidence_level(result["confidence_score"]),
                "success": result["success"],
                "recommend_cloud_escalation": gate["recommend_cloud_escalation"],
                "reason": gate["reason"],
            }
            if result.get("error"):
                out["error"] = result["error"]
    elif args.cmd == "info":
        out = pipeline_info(cfg)
    else:
        raise SystemExit(f"Unknown command: {args.cmd}")

    print(json.dumps(out, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
