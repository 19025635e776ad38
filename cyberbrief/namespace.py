"""
Namespace scaffolding for the flows directory.

A namespace is a directory <flows_dir>/<name>/ holding that namespace's flow
files. New namespaces start with a single example flow.
"""

import logging
from pathlib import Path

from .flows import NAMESPACE_PATTERN


logger = logging.getLogger(__name__)


EXAMPLE_FLOW_FILENAME = "example.yaml"

EXAMPLE_FLOW_TEMPLATE = """id: example_flow
namespace: {namespace}

description: |
  Example flow for {namespace} namespace

tasks:
  - id: hello
    type: io.kestra.plugin.core.log.Log
    message: "Hello from {namespace}!"
"""


class NamespaceError(Exception):
    """Raised when a namespace cannot be created."""
    pass


def create_namespace(name: str, flows_dir: Path) -> Path:
    """
    Create a namespace directory with an example flow.

    Args:
        name: Namespace name (e.g. "production" or "company.team").
        flows_dir: Root directory holding all namespaces.

    Returns:
        Path of the example flow file.

    Raises:
        NamespaceError: If the name is invalid or the namespace already exists.
    """
    if not name or not NAMESPACE_PATTERN.match(name):
        raise NamespaceError(
            f"Invalid namespace name '{name}': use lowercase letters, digits, '.', '_' or '-'"
        )

    namespace_dir = Path(flows_dir) / name
    if namespace_dir.exists():
        raise NamespaceError(f"Namespace '{name}' already exists at {namespace_dir}")

    logger.info(f"Creating namespace: {name}")
    namespace_dir.mkdir(parents=True)

    example = namespace_dir / EXAMPLE_FLOW_FILENAME
    example.write_text(EXAMPLE_FLOW_TEMPLATE.format(namespace=name), encoding="utf-8")
    logger.info(f"Example flow created at: {example}")
    return example


def list_namespaces(flows_dir: Path) -> list[str]:
    """Names of the namespace directories under flows_dir, sorted."""
    flows_dir = Path(flows_dir)
    if not flows_dir.is_dir():
        return []
    return sorted(
        path.name for path in flows_dir.iterdir()
        if path.is_dir() and not path.name.startswith(".")
    )
