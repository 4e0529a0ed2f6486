#!/usr/bin/env python3
"""
Connection Management CLI.

Scores registered profiles against each other, records the results in the
connection store, and answers match-list and connection-graph queries.

Usage:
    python scripts/manage_connections.py match --profiles data/profiles.json
    python scripts/manage_connections.py match --profiles data/profiles.json --profile-id 17 \
        --faces data/faces.npy --voices data/voices.npy
    python scripts/manage_connections.py top 17 --min-score 0.5 --limit 20
    python scripts/manage_connections.py graph 17 --min-score 0.5 --max-depth 3 --d3
    python scripts/manage_connections.py path 17 42
    python scripts/manage_connections.py verify 17 42
    python scripts/manage_connections.py reject 17 42
    python scripts/manage_connections.py stats
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from core import config
from core.connection_store import ConnectionStore, ConnectionType
from core.errors import InvalidInput, StoreUnavailable
from core.features import FaceFeatureSupplier, VoiceFeatureSupplier, attach_features
from core.graph_expander import GraphExpander
from core.matching import MatchingService
from core.profiles import load_profiles


def parse_profile_id(value: str):
    """Numeric ids are ints (as registered); anything else stays a string."""
    try:
        return int(value)
    except ValueError:
        return value


def load_profile_names(path: Path) -> dict:
    """profile_id -> display name, or {} if the profiles file is missing."""
    if not path.exists():
        return {}
    return {p.profile_id: p.attributes.full_name or "Unknown" for p in load_profiles(path)}


def format_connection(conn, profile_id, names: dict) -> str:
    other = conn.other(profile_id)
    name = names.get(other, "")
    relationship = conn.predicted_relationship or "-"
    return (
        f"  {str(other):<12} {name:<28} {conn.score_percent:>3}%  "
        f"face={conn.result.facial_score:.2f} voice={conn.result.voice_score:.2f} "
        f"info={conn.result.information_score:.2f}  "
        f"{conn.result.confidence_tier.value:<6} {conn.connection_type.value:<9} {relationship}"
    )


def cmd_match(args):
    """Score profiles and store the connections."""
    store = ConnectionStore.open(args.store)
    profiles = load_profiles(args.profiles)

    face = FaceFeatureSupplier.from_file(args.faces) if args.faces else None
    voice = VoiceFeatureSupplier.from_file(args.voices) if args.voices else None
    if face is not None or voice is not None:
        profiles = [attach_features(p, face=face, voice=voice) for p in profiles]

    service = MatchingService(store)

    if args.profile_id is None:
        count = service.match_all(profiles)
        print(f"Stored {count} connections for {len(profiles)} profiles")
        return

    profile_id = parse_profile_id(args.profile_id)
    target = next((p for p in profiles if p.profile_id == profile_id), None)
    if target is None:
        raise KeyError(f"Profile not found: {profile_id}")

    connections = service.match_against(target, profiles)
    print(f"Stored {len(connections)} connections for profile {profile_id}")


def cmd_top(args):
    """Show the ranked match list for a profile."""
    store = ConnectionStore.open(args.store)
    profile_id = parse_profile_id(args.profile_id)
    names = load_profile_names(args.profiles)

    matches = store.top_matches(profile_id, min_score=args.min_score, limit=args.limit)
    if not matches:
        print("No matches found.")
        return

    print(f"Top {len(matches)} matches for {profile_id} (min score {args.min_score}):")
    for conn in matches:
        print(format_connection(conn, profile_id, names))


def cmd_graph(args):
    """Print the connection graph around a profile as JSON."""
    store = ConnectionStore.open(args.store)
    profile_id = parse_profile_id(args.profile_id)

    view = GraphExpander(store).expand(profile_id, args.min_score, args.max_depth)
    if args.d3:
        output = view.to_d3(load_profile_names(args.profiles))
    else:
        output = view.to_dict()
    print(json.dumps(output, indent=2))


def cmd_path(args):
    """Show how two profiles are connected."""
    store = ConnectionStore.open(args.store)
    source = parse_profile_id(args.source)
    target = parse_profile_id(args.target)

    path = GraphExpander(store).shortest_path(
        source, target, min_score=args.min_score, max_depth=args.max_depth
    )
    if path is None:
        print(f"No connection between {source} and {target}.")
        return
    if not path:
        print("Same profile.")
        return

    current = source
    for conn in path:
        nxt = conn.other(current)
        print(f"  {current} -> {nxt}  ({conn.score_percent}%, {conn.connection_type.value})")
        current = nxt


def _set_type(args, connection_type: ConnectionType):
    store = ConnectionStore.open(args.store)
    a = parse_profile_id(args.id_a)
    b = parse_profile_id(args.id_b)
    store.set_connection_type(a, b, connection_type)
    print(f"Marked connection {a} - {b} as {connection_type.value}")


def cmd_verify(args):
    """Mark a connection as verified."""
    _set_type(args, ConnectionType.VERIFIED)


def cmd_reject(args):
    """Mark a connection as rejected."""
    _set_type(args, ConnectionType.REJECTED)


def cmd_stats(args):
    """Show connection store statistics."""
    stats = ConnectionStore.open(args.store).stats()
    print(f"Total connections:       {stats['total_connections']}")
    print(f"High-confidence matches: {stats['high_confidence_matches']}")
    for type_name, count in stats["by_type"].items():
        print(f"  {type_name:<10} {count}")


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    parser = argparse.ArgumentParser(description="Manage profile connections")
    parser.add_argument(
        "--store",
        type=Path,
        default=Path(config.CONNECTIONS_PATH),
        help=f"Connection store path (default: {config.CONNECTIONS_PATH})",
    )
    parser.add_argument(
        "--profiles",
        type=Path,
        default=Path(config.PROFILES_PATH),
        help=f"Profiles file path (default: {config.PROFILES_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # match command
    match_parser = subparsers.add_parser("match", help="Score profiles and store connections")
    match_parser.add_argument("--profile-id", help="Only match this profile against the others")
    match_parser.add_argument("--faces", type=Path, help="Face descriptor .npy file (trusted pipeline output; loaded with pickle)")
    match_parser.add_argument("--voices", type=Path, help="Voice print .npy file (trusted pipeline output; loaded with pickle)")
    match_parser.set_defaults(func=cmd_match)

    # top command
    top_parser = subparsers.add_parser("top", help="Ranked matches for a profile")
    top_parser.add_argument("profile_id", help="Profile ID")
    top_parser.add_argument("--min-score", type=float, default=config.DEFAULT_MIN_SCORE)
    top_parser.add_argument("--limit", type=int, default=config.DEFAULT_MAX_RESULTS)
    top_parser.set_defaults(func=cmd_top)

    # graph command
    graph_parser = subparsers.add_parser("graph", help="Connection graph around a profile")
    graph_parser.add_argument("profile_id", help="Profile ID")
    graph_parser.add_argument("--min-score", type=float, default=config.DEFAULT_MIN_SCORE)
    graph_parser.add_argument("--max-depth", type=int, default=config.DEFAULT_MAX_DEPTH)
    graph_parser.add_argument("--d3", action="store_true", help="Export in D3.js format")
    graph_parser.set_defaults(func=cmd_graph)

    # path command
    path_parser = subparsers.add_parser("path", help="How two profiles are connected")
    path_parser.add_argument("source", help="Source profile ID")
    path_parser.add_argument("target", help="Target profile ID")
    path_parser.add_argument("--min-score", type=float, default=config.DEFAULT_MIN_SCORE)
    path_parser.add_argument("--max-depth", type=int, default=None)
    path_parser.set_defaults(func=cmd_path)

    # verify / reject commands
    verify_parser = subparsers.add_parser("verify", help="Mark a connection verified")
    verify_parser.add_argument("id_a", help="Profile ID")
    verify_parser.add_argument("id_b", help="Profile ID")
    verify_parser.set_defaults(func=cmd_verify)

    reject_parser = subparsers.add_parser("reject", help="Mark a connection rejected")
    reject_parser.add_argument("id_a", help="Profile ID")
    reject_parser.add_argument("id_b", help="Profile ID")
    reject_parser.set_defaults(func=cmd_reject)

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Connection store statistics")
    stats_parser.set_defaults(func=cmd_stats)

    args = parser.parse_args()
    try:
        args.func(args)
    except (KeyError, InvalidInput, StoreUnavailable) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
