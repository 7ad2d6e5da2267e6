# /*
# Copyright 2026 The kube-detective Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""
cli.py - kube-detective command line.

Subcommands:
    run        Provision probes, dial every network path once, clean up
    schedule   Repeat runs on a fixed interval and serve Prometheus metrics

Environment Variables:
    Every option can also be set via DETECTIVE_* environment variables:
    - DETECTIVE_EXTERNAL_CIDR (default: unset)
    - DETECTIVE_NODE_FILTER (default: .*)
    - DETECTIVE_TEST_EXTERNAL_IPS (default: false)
    - DETECTIVE_WORKER_COUNT (default: 10)
    - And more (see DetectiveConfig for the full list)

Examples:
    # Pod and ClusterIP checks on every ready node
    kube-detective run

    # Only nodes of one pool, without host-network probes
    kube-detective run --node-filter '^pool-a-' --no-host-network

    # External IPs from a dedicated range
    kube-detective run --external-ips --external-cidr 10.44.0.0/28

    # Every five minutes, metrics on :8080/metrics
    kube-detective schedule --interval 300
"""

from __future__ import annotations

import logging
import sys

import typer
from rich.markup import escape

from kube_detective import console
from kube_detective.commands import run_cmd, schedule_cmd

app = typer.Typer(
    help="In-cluster network connectivity checks.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.add_typer(run_cmd.app, name="run")
app.add_typer(schedule_cmd.app, name="schedule")


def _leaf_errors(err: BaseExceptionGroup) -> list[BaseException]:
    leaves: list[BaseException] = []
    for sub in err.exceptions:
        if isinstance(sub, BaseExceptionGroup):
            leaves.extend(_leaf_errors(sub))
        else:
            leaves.append(sub)
    return leaves


def report_error(err: BaseException) -> None:
    """Print a fatal error, every failing check grouped inside it, and its notes."""
    console.print(f"[red]❌ {escape(str(err))}[/red]")
    if isinstance(err, BaseExceptionGroup):
        for leaf in _leaf_errors(err):
            console.print(f"[red]   - {escape(str(leaf))}[/red]")
    for note in getattr(err, "__notes__", []):
        console.print(f"[red]   {escape(note)}[/red]")


def main() -> None:
    try:
        app()
    except Exception as e:
        report_error(e)
        sys.exit(1)


if __name__ == "__main__":
    main()
