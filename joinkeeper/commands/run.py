import logging
from pathlib import Path
from typing import Optional

import typer

from joinkeeper.api.main import create_server
from joinkeeper.config import get_config, set_config, ControllerConfig
from joinkeeper.handlers import OperatorState, run_operator
from joinkeeper.kube.client import load_kubeconfig
from joinkeeper.logging import configure_logging

logger = logging.getLogger("joinkeeper.run")


def run(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
    kubeconfig: Optional[str] = typer.Option(None, help="Kubeconfig for the management cluster"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="Only watch this namespace"),
    probe_port: Optional[int] = typer.Option(None, help="Port for /healthz and /readyz (0 disables)"),
):
    """Run the join token and control plane status controllers."""
    try:
        config = ControllerConfig.load(config_path) if config_path else get_config()
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ Invalid configuration: {e}")
        raise typer.Exit(code=1)

    if kubeconfig:
        config.kube.kubeconfig = kubeconfig
    if namespace:
        config.operator.namespace = namespace
    if probe_port is not None:
        config.operator.probe_port = probe_port
    set_config(config)

    configure_logging(config.logging, debug=logging.getLogger().level == logging.DEBUG)

    source = load_kubeconfig(config.kube.kubeconfig, config.kube.context)
    logger.info(f"Using management cluster credentials from {source}")

    state = OperatorState()
    health_server = None
    if config.operator.probe_port:
        health_server = create_server(
            state, host=config.operator.probe_bind_address, port=config.operator.probe_port
        )

    run_operator(config, state, health_server=health_server)
