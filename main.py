#!/usr/bin/env python3
"""
Room authorization harness.
Evaluate chat-room operation requests (JSON or YAML files) against the rule engine.
"""

import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "info").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)

logger = logging.getLogger("roomauthz.cli")

EXIT_ALLOW = 0
EXIT_DENY = 1
EXIT_BAD_INPUT = 2


def parse_payload(text: str, *, fmt: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Parse a request file into a list of raw request dicts.

    Accepts one request object or a list of them. Format is JSON unless `fmt`
    says yaml (or the text does not parse as JSON).
    """
    import json

    import yaml

    data: Any
    if fmt == "yaml":
        data = yaml.safe_load(text)
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            if fmt == "json":
                raise
            data = yaml.safe_load(text)

    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(x, dict) for x in data):
        raise ValueError("request file must hold a request object or a list of request objects")
    return data


def build_request(raw: Dict[str, Any]):  # type: ignore[no-untyped-def]
    from roomauthz.core.models import OperationRequest
    from roomauthz.core.ops import decode_markers

    payload = dict(raw)
    if payload.get("proposed_diff") is not None:
        payload["proposed_diff"] = decode_markers(payload["proposed_diff"])
    return OperationRequest.model_validate(payload)


def evaluate_payload(raws: List[Dict[str, Any]], *, echo: bool = False) -> Tuple[List[Dict[str, Any]], int]:
    """
    Evaluate every request; return (decision dicts, exit code).

    With `echo`, each decision also carries the decoded write back in `{"$op": ...}` form.
    """
    from pydantic import ValidationError

    from roomauthz.core.ops import MarkerDecodeError, encode_markers
    from roomauthz.engine.decision import evaluate

    out: List[Dict[str, Any]] = []
    exit_code = EXIT_ALLOW
    for i, raw in enumerate(raws):
        try:
            request = build_request(raw)
        except (ValidationError, MarkerDecodeError) as e:
            logger.error("request #%d is malformed: %s", i, e)
            out.append({"index": i, "verdict": "error", "error": str(e)})
            exit_code = EXIT_BAD_INPUT
            continue
        decision = evaluate(request)
        result = {"index": i, **decision.to_dict()}
        if echo and request.proposed_diff is not None:
            result["proposed_diff"] = encode_markers(request.proposed_diff)
        out.append(result)
        if not decision.allowed and exit_code == EXIT_ALLOW:
            exit_code = EXIT_DENY
    return out, exit_code


def _format_line(result: Dict[str, Any], *, explain: bool) -> str:
    if result.get("verdict") == "error":
        return f"#{result['index']}: ERROR {result.get('error')}"
    line = f"#{result['index']}: {result['verdict'].upper()}"
    if result.get("code"):
        line += f" [{result['category']}/{result['code']}]"
    if result.get("detail"):
        line += f" {result['detail']}"
    if explain:
        line += f"\n    role={result.get('role') or '-'}"
        for item in result.get("items") or []:
            line += f"\n    - {item}"
    return line


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Evaluate chat-room authorization requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Evaluate one request file
  python main.py --request join.json

  # Batch of requests in YAML, with role and transitions
  python main.py --request scenarios.yaml --explain

  # Read from stdin, print JSON only
  cat join.json | python main.py --dump-json
        """,
    )
    parser.add_argument(
        "--request",
        "-r",
        help="Path to a JSON/YAML file with one request or a list of requests. If omitted, reads stdin.",
    )
    parser.add_argument("--format", choices=["json", "yaml"], help="Force input format (default: sniff)")
    parser.add_argument("--explain", action="store_true", help="Show resolved role and classified transitions")
    parser.add_argument("--dump-json", action="store_true", help="Print decisions as JSON to stdout")

    args = parser.parse_args()

    fmt = args.format
    try:
        if args.request:
            if fmt is None and args.request.endswith((".yaml", ".yml")):
                fmt = "yaml"
            with open(args.request, "r", encoding="utf-8") as f:
                text = f.read()
        else:
            text = sys.stdin.read()
        raws = parse_payload(text, fmt=fmt)
    except Exception as e:
        print(f"Error reading requests: {e}", file=sys.stderr)
        raise SystemExit(EXIT_BAD_INPUT)

    results, exit_code = evaluate_payload(raws, echo=args.dump_json)

    if args.dump_json:
        import json

        print(json.dumps(results if len(results) != 1 else results[0], indent=2, sort_keys=False))
    else:
        for result in results:
            print(_format_line(result, explain=args.explain))

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
