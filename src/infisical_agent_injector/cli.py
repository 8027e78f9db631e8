#!/usr/bin/env python
"""Command-line interface for infisical-agent-injector.

This module provides the entry point that bootstraps the webhook: it
loads the cluster configuration, creates and publishes the serving
certificate, and starts the HTTPS server.
"""

import sys
from pathlib import Path

import click
from icecream import ic

from infisical_agent_injector import __version__, console
from infisical_agent_injector.admission import AdmissionHandler
from infisical_agent_injector.cluster import Cluster
from infisical_agent_injector.config import ConfigResolver
from infisical_agent_injector.constants import DEFAULT_CERT_DIR, DEFAULT_NAMESPACE, DEFAULT_PORT
from infisical_agent_injector.exceptions import CertificateError, ClusterConnectionError
from infisical_agent_injector.server import create_app
from infisical_agent_injector.trust import (
    generate_self_signed_cert,
    start_ca_bundle_registration,
    write_tls_material,
)


@click.command(help="Inject the Infisical agent into annotated Kubernetes pods")
@click.option("--version", "-v", required=False, is_flag=True, help="print version")
@click.option("--debug", required=False, is_flag=True, help="print debug information")
@click.option(
    "--namespace",
    envvar="NAMESPACE",
    default=DEFAULT_NAMESPACE,
    show_default=True,
    help="namespace the webhook service runs in",
)
@click.option("--port", envvar="PORT", default=DEFAULT_PORT, show_default=True, type=int, help="HTTPS port")
@click.option(
    "--cert-dir",
    envvar="TLS_CERT_DIR",
    default=DEFAULT_CERT_DIR,
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="directory for the generated serving certificate",
)
def cli(debug: bool, namespace: str, port: int, cert_dir: Path, version: bool) -> None:
    """Start the admission webhook.

    Args:
        debug: Enable debug output.
        namespace: Namespace of the webhook service, used in the certificate.
        port: Port the HTTPS server listens on.
        cert_dir: Directory the certificate and key are written to.
        version: Print version and exit.

    """
    if not debug:
        ic.disable()

    if version:
        click.echo(__version__)
        return

    console.setup_logging(debug)

    try:
        cluster = Cluster()
    except ClusterConnectionError as e:
        console.error(f"Cluster connection failed: {e}")
        sys.exit(1)
    ic(cluster)
    if not cluster.in_cluster:
        console.warning("Not running inside a cluster, using the local kubeconfig")

    console.action(f"Generating serving certificate for namespace {console.highlight(namespace)}")
    try:
        material = generate_self_signed_cert(namespace)
        paths = write_tls_material(material, cert_dir)
    except CertificateError as e:
        console.error(str(e))
        sys.exit(1)
    console.info(f"Serving certificate written to {paths.cert_file}")

    start_ca_bundle_registration(cluster, material.cert_pem)

    app = create_app(AdmissionHandler(ConfigResolver(cluster)), paths.cert_file, paths.key_file)

    console.success(f"Starting webhook server on port {console.highlight(str(port))}")
    try:
        app.run(host="0.0.0.0", port=port, ssl_context=(str(paths.cert_file), str(paths.key_file)))
    except OSError as e:
        console.error(f"Failed to start server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
