#!/usr/bin/env python3
"""
wfh — Workflow Auto-Heal CLI.

A command-line interface for the workflow validation and auto-healing API.

Usage:
    wfh health                  Show service health
    wfh validate <file>         Validate a workflow JSON file
    wfh heal <file>             Heal a workflow JSON file (prints healed workflow)
    wfh submit <file>           Submit a workflow as a new execution
    wfh status <id>             Show an execution's status and healing metadata
    wfh stats [--timeframe T]   Healing statistics (day, week, month)
    wfh queue <name>            Queue depth and dead-letter depth

Files may be "-" to read from stdin.

Environment variables:
    WFH_BASE_URL    API base URL (default: http://localhost:8000)
    WFH_API_KEY     API key for authenticated requests
"""

import argparse
import json
import os
import sys

import httpx

BASE_URL = os.getenv("WFH_BASE_URL", "http://localhost:8000")
API_KEY = os.getenv("WFH_API_KEY", "")
OUTPUT_JSON = False


def _headers():
    headers = {"Content-Type": "application/json"}
    if API_KEY:
        headers["X-API-Key"] = API_KEY
    return headers


def api_get(path, params=None):
    """GET request to the API."""
    try:
        return httpx.get(f"{BASE_URL}{path}", params=params, headers=_headers(), timeout=30)
    except httpx.ConnectError:
        print(f"Error: Cannot connect to {BASE_URL}")
        sys.exit(1)


def api_post(path, body=None):
    """POST request to the API."""
    try:
        return httpx.post(f"{BASE_URL}{path}", json=body or {}, headers=_headers(), timeout=60)
    except httpx.ConnectError:
        print(f"Error: Cannot connect to {BASE_URL}")
        sys.exit(1)


def handle_error(resp):
    """Print error and exit if response is not 2xx."""
    if resp.status_code >= 400:
        try:
            detail = resp.json().get("detail", resp.text)
        except Exception:
            detail = resp.text
        print(f"Error {resp.status_code}: {detail}")
        sys.exit(1)


def print_json(data):
    """Print formatted JSON."""
    print(json.dumps(data, indent=2, default=str))


def print_table(headers, rows):
    """Print a formatted ASCII table."""
    if not rows:
        print("(no data)")
        return
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(str(cell)))

    fmt = " | ".join(f"{{:<{w}}}" for w in widths)
    print(fmt.format(*headers))
    print("-+-".join("-" * w for w in widths))
    for row in rows:
        print(fmt.format(*[str(c) for c in row]))


def load_workflow(path):
    """Read a workflow JSON document from a file path or stdin ("-")."""
    try:
        if path == "-":
            return json.load(sys.stdin)
        with open(path) as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: Cannot read workflow from {path}: {e}")
        sys.exit(1)


def print_errors(errors):
    rows = [[e.get("layer"), e.get("severity"), e.get("type"), e.get("path") or "", e.get("message")]
            for e in errors]
    print_table(["Layer", "Severity", "Type", "Path", "Message"], rows)


# ── Commands ─────────────────────────────────────────────────────


def cmd_health(args):
    """Show service health."""
    r = api_get("/health")
    handle_error(r)
    data = r.json()
    if OUTPUT_JSON:
        print_json(data)
        return
    print(f"OK: {data.get('ok', False)}")
    workers = data.get("workers", {})
    if workers:
        print_table(["Queue", "Running"], [[q, running] for q, running in workers.items()])


def cmd_validate(args):
    """Validate a workflow file."""
    r = api_post("/validate", {"workflow": load_workflow(args.file)})
    handle_error(r)
    data = r.json()
    if OUTPUT_JSON:
        print_json(data)
        return
    print(f"Valid: {data['valid']}  ({len(data['errors'])} error(s), {data.get('checks_run', 0)} checks)")
    print_errors(data["errors"])


def cmd_heal(args):
    """Heal a workflow file."""
    r = api_post("/heal", {"workflow": load_workflow(args.file)})
    handle_error(r)
    data = r.json()
    if OUTPUT_JSON:
        print_json(data)
        return
    print(f"Success: {data['success']}  Confidence: {data['confidence']} ({data.get('confidence_grade', '?')})")
    rows = [[f["fix_type"], f["confidence"], f["description"]] for f in data["applied_fixes"]]
    print_table(["Fix", "Confidence", "Description"], rows)
    if data["remaining_errors"]:
        print("\nRemaining errors:")
        print_errors(data["remaining_errors"])
    if data.get("workflow") and args.output:
        with open(args.output, "w") as f:
            json.dump(data["workflow"], f, indent=2)
        print(f"\nHealed workflow written to {args.output}")


def cmd_submit(args):
    """Submit a workflow as a new execution."""
    body = {"workflow": load_workflow(args.file), "auto_heal": not args.no_heal}
    if args.user:
        body["user_id"] = args.user
    r = api_post("/executions", body)
    handle_error(r)
    data = r.json()
    if OUTPUT_JSON:
        print_json(data)
        return
    print(f"Execution: {data['execution_id']}")
    print(f"Status: {data['status']}")
    if data["errors"]:
        print_errors(data["errors"])


def cmd_status(args):
    """Show an execution's status."""
    r = api_get(f"/executions/{args.id}")
    handle_error(r)
    data = r.json()
    if OUTPUT_JSON:
        print_json(data)
        return
    print(f"Execution: {data['id']}")
    print(f"Status: {data['status']}")
    metadata = data.get("metadata") or {}
    if metadata.get("heal_attempted"):
        print(f"Auto-healed: {metadata.get('auto_healed')}  Confidence: {metadata.get('healing_confidence')}")
        rows = [[f.get("fix_type"), f.get("confidence"), f.get("description")]
                for f in metadata.get("applied_fixes", [])]
        print_table(["Fix", "Confidence", "Description"], rows)


def cmd_stats(args):
    """Healing statistics."""
    r = api_get("/heal/stats", params={"timeframe": args.timeframe})
    handle_error(r)
    data = r.json()
    if OUTPUT_JSON:
        print_json(data)
        return
    print(f"Timeframe: {data['timeframe']}")
    print(f"Attempts: {data['total_attempts']}  Healed: {data['successful_heals']}  "
          f"Success rate: {data['success_rate']}%")
    print_table(["Error type", "Count"], [[c["error_type"], c["count"]] for c in data["common_errors"]])


def cmd_queue(args):
    """Queue statistics."""
    r = api_get(f"/queues/{args.name}/stats")
    handle_error(r)
    data = r.json()
    if OUTPUT_JSON:
        print_json(data)
        return
    print_table(
        ["Queue", "Depth", "Visible", "In flight", "Oldest (s)", "DLQ"],
        [[data["queue_name"], data["depth"], data["visible"], data["in_flight"],
          data["oldest_age_seconds"], data["dead_letter_depth"]]],
    )


def main(argv=None):
    global BASE_URL, API_KEY, OUTPUT_JSON

    parser = argparse.ArgumentParser(prog="wfh", description="Workflow Auto-Heal CLI")
    parser.add_argument("--url", default=os.getenv("WFH_BASE_URL", "http://localhost:8000"), help="API base URL")
    parser.add_argument("--key", default=os.getenv("WFH_API_KEY", ""), help="API key")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Output raw JSON")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("health", help="Service health")
    p = sub.add_parser("validate", help="Validate a workflow file")
    p.add_argument("file", help="Workflow JSON file or -")
    p = sub.add_parser("heal", help="Heal a workflow file")
    p.add_argument("file", help="Workflow JSON file or -")
    p.add_argument("-o", "--output", help="Write the healed workflow here")
    p = sub.add_parser("submit", help="Submit a workflow execution")
    p.add_argument("file", help="Workflow JSON file or -")
    p.add_argument("--user", help="User ID")
    p.add_argument("--no-heal", action="store_true", help="Do not queue auto-healing")
    p = sub.add_parser("status", help="Execution status")
    p.add_argument("id", help="Execution ID")
    p = sub.add_parser("stats", help="Healing statistics")
    p.add_argument("--timeframe", choices=["day", "week", "month"], default="day")
    p = sub.add_parser("queue", help="Queue statistics")
    p.add_argument("name", help="Queue name")

    args = parser.parse_args(argv)
    BASE_URL = args.url
    API_KEY = args.key
    OUTPUT_JSON = args.json_output

    cmd_map = {
        "health": cmd_health,
        "validate": cmd_validate,
        "heal": cmd_heal,
        "submit": cmd_submit,
        "status": cmd_status,
        "stats": cmd_stats,
        "queue": cmd_queue,
    }

    if args.command in cmd_map:
        cmd_map[args.command](args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
