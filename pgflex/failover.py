"""Quorum check run before a standby is promoted."""

from __future__ import annotations

import argparse
from typing import Sequence


def quorum_met(visible_nodes: int, total_nodes: int) -> bool:
    """Return True when the visible nodes form a majority of the cluster."""
    majority = int(total_nodes / 2) + 1
    return visible_nodes != 0 and visible_nodes >= majority


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="failover_validation")
    parser.add_argument(
        "-visible-nodes",
        "--visible-nodes",
        dest="visible_nodes",
        type=int,
        default=0,
        help="Total visible nodes from the perspective of the proposed leader",
    )
    parser.add_argument(
        "-total-nodes",
        "--total-nodes",
        dest="total_nodes",
        type=int,
        default=0,
        help="The total number of nodes registered",
    )
    args = parser.parse_args(argv)

    if not quorum_met(args.visible_nodes, args.total_nodes):
        print(
            "Unable to perform failover as quorum can not be met. "
            f"Total nodes: {args.total_nodes}, Visible nodes: {args.visible_nodes}"
        )
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())