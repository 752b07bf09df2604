"""EventScout - event discovery and extraction

Simple CLI for running one event search.
"""

import argparse
import asyncio
import json
import sys

from eventscout.agents.orchestrator import EventPipeline
from eventscout.errors import ValidationError


async def run_search(payload: dict, as_json: bool = False) -> int:
    """Run the pipeline for one request and print the result."""
    try:
        output = await EventPipeline().run(payload)
    except ValidationError as exc:
        print(f"[!] Invalid request: {exc}", file=sys.stderr)
        return 2

    if as_json:
        print(json.dumps(output.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False))
        return 0

    meta = output.metadata
    print(f"Search: {payload.get('userText', '')} ({payload.get('country', 'ALL')})")
    print("-" * 50)
    if meta.provider == "demo":
        print("[~] No search provider configured, showing demo events")
    for i, event in enumerate(output.events, 1):
        when = event.starts_at.isoformat() if event.starts_at else "date unknown"
        where = ", ".join(p for p in (event.venue, event.city, event.country) if p)
        print(f"\n{i}. {event.title}")
        print(f"   {when} | {where or 'location unknown'}")
        print(f"   {event.url}")
        print(f"   Speakers: {', '.join(s.name for s in event.speakers)}")
        print(f"   Confidence: {event.confidence:.2f}")

    print(f"\n{'=' * 50}")
    print(
        f"{len(output.events)} events | {meta.total_candidates} candidates | "
        f"{meta.prioritized_candidates} prioritized | {meta.extracted_candidates} extracted"
    )
    print(f"Runtime: {meta.total_duration_ms}ms | Providers: {', '.join(meta.providers_used) or 'none'}")
    if meta.expanded:
        print("Date window was widened once to find more events")
    if meta.partial:
        print("[!] Partial results")
    return 0


def main():
    parser = argparse.ArgumentParser(description="EventScout event search")
    parser.add_argument("--query", "-q", required=True, help="What to look for, e.g. 'compliance conference'")
    parser.add_argument("--country", "-c", default="ALL", help="ISO-2 country code or ALL")
    parser.add_argument("--from", dest="date_from", help="Window start (YYYY-MM-DD)")
    parser.add_argument("--to", dest="date_to", help="Window end (YYYY-MM-DD)")
    parser.add_argument("--industry", "-i", help="Industry template id")
    parser.add_argument("--json", action="store_true", help="Print the raw JSON output")

    args = parser.parse_args()
    payload = {
        "userText": args.query,
        "country": args.country,
        "dateFrom": args.date_from,
        "dateTo": args.date_to,
        "industry": args.industry,
    }

    sys.exit(asyncio.run(run_search(payload, as_json=args.json)))


if __name__ == "__main__":
    main()
