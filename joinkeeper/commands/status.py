import sys
from pathlib import Path

import typer
import yaml

from joinkeeper.controllers.controlplane import compute_status
from joinkeeper.models import ControlPlaneSpec, ControlPlaneStatus, MemberRecord

app = typer.Typer()


@app.command("compute")
def compute(path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Snapshot YAML file")):
    """Compute control plane status offline from a snapshot of its machines.

    The snapshot has the keys ``version``, ``args``, ``members`` (each with
    ``name``, ``phase`` and ``version``) and optionally ``previousVersion``.
    """
    with open(path) as f:
        snapshot = yaml.safe_load(f) or {}

    if not isinstance(snapshot, dict):
        print("❌ Snapshot must be a mapping", file=sys.stderr)
        raise typer.Exit(code=1)

    members = [
        MemberRecord(
            name=str(m.get("name", "")),
            phase=str(m.get("phase", "")),
            version=str(m.get("version") or ""),
        )
        for m in snapshot.get("members") or []
    ]
    spec = ControlPlaneSpec(
        version=str(snapshot.get("version", "")),
        args=list(snapshot.get("args") or []),
    )
    previous = ControlPlaneStatus(version=str(snapshot.get("previousVersion") or ""))

    status = compute_status(members, spec, previous)
    data = status.to_dict()
    data.pop("conditions", None)
    print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), end="")
