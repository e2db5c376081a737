import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from kubernetes import config

logger = logging.getLogger("joinkeeper.kube")


def load_kubeconfig(path: Optional[str] = None, context: Optional[str] = None) -> str:
    """
    Load management cluster credentials.

    Sources, in order: the KUBECONFIG_CONTENT env var, an explicit kubeconfig
    path, the in-cluster service account.

    Returns a description of the source that was used.
    """
    # CI/CD secret-based loading
    if "KUBECONFIG_CONTENT" in os.environ:
        with tempfile.NamedTemporaryFile(mode="w", delete=False, suffix=".yaml") as f:
            f.write(os.environ["KUBECONFIG_CONTENT"])
            temp_path = f.name
        try:
            config.load_kube_config(config_file=temp_path, context=context)
        finally:
            os.unlink(temp_path)
        return "KUBECONFIG_CONTENT"

    if path:
        resolved = Path(os.path.expanduser(path)).resolve()
        if not resolved.exists():
            raise FileNotFoundError(f"Kubeconfig not found: {resolved}")
        config.load_kube_config(config_file=str(resolved), context=context)
        return str(resolved)

    config.load_incluster_config()
    return "in-cluster"
