"""Kubernetes namespace management and declarative manifest apply.

ClusterClient talks to the cluster selected by the current kubeconfig
context (the deploy stage points it at the managed cluster first).
Manifests are applied with server-side apply, so applying the same set
twice converges on the same resources instead of duplicating them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import urllib3
import yaml
from kubernetes import client, config, dynamic
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")


class ClusterError(Exception):
    """Raised when the cluster is unreachable or rejects a request."""


def load_manifests(
    manifests_dir: Path, substitutions: dict[str, str] | None = None
) -> list[dict[str, Any]]:
    """Read every YAML document under *manifests_dir* in filename order.

    ``${NAME}`` placeholders are replaced from *substitutions* before
    parsing.  Empty documents are dropped.

    Raises:
        ClusterError: If the directory is missing, holds no manifests, or a
            document lacks ``apiVersion``, ``kind`` or ``metadata.name``.
    """
    if not manifests_dir.is_dir():
        msg = f"Manifest directory not found: {manifests_dir}"
        raise ClusterError(msg)

    documents: list[dict[str, Any]] = []
    files = sorted(p for p in manifests_dir.iterdir() if p.suffix in MANIFEST_SUFFIXES)
    for path in files:
        text = path.read_text()
        for key, value in (substitutions or {}).items():
            text = text.replace("${" + key + "}", value)
        try:
            docs = [d for d in yaml.safe_load_all(text) if d]
        except yaml.YAMLError as exc:
            msg = f"Invalid YAML in {path.name}: {exc}"
            raise ClusterError(msg) from exc
        for doc in docs:
            if not doc.get("apiVersion") or not doc.get("kind") or not doc.get("metadata", {}).get("name"):
                msg = f"{path.name}: manifest needs apiVersion, kind and metadata.name"
                raise ClusterError(msg)
            documents.append(doc)

    if not documents:
        msg = f"No manifests found in {manifests_dir}"
        raise ClusterError(msg)
    return documents


def resource_id(doc: dict[str, Any]) -> str:
    return f"{doc['kind']}/{doc['metadata']['name']}"


def add_exec_env(kubeconfig: Path, env: dict[str, str]) -> int:
    """Pin *env* into every exec credential plugin declared in *kubeconfig*.

    The kubernetes client starts exec plugins (``gke-gcloud-auth-plugin``)
    with its own process environment, so variables passed only to the CLI
    that wrote the kubeconfig never reach them.  Existing entries with the
    same name are replaced.

    Returns:
        The number of users whose exec block was updated.

    Raises:
        ClusterError: If the kubeconfig is missing or not valid YAML.
    """
    try:
        data = yaml.safe_load(kubeconfig.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Cannot read kubeconfig {kubeconfig}: {exc}"
        raise ClusterError(msg) from exc

    updated = 0
    for entry in data.get("users") or []:
        exec_config = (entry.get("user") or {}).get("exec")
        if not exec_config:
            continue
        kept = [e for e in exec_config.get("env") or [] if e.get("name") not in env]
        exec_config["env"] = kept + [{"name": k, "value": v} for k, v in env.items()]
        updated += 1

    if updated:
        kubeconfig.write_text(yaml.safe_dump(data, sort_keys=False))
        logger.debug("Pinned %s into %d exec plugin(s) in %s", ", ".join(env), updated, kubeconfig)
    return updated


class ClusterClient:
    """Namespace and manifest operations on one cluster.

    Args:
        api_client: Pre-configured ``kubernetes.client.ApiClient``.  When
            omitted, the current kubeconfig context is loaded on first use.
        dynamic_client: Optional dynamic client (tests pass a fake).
        kubeconfig: Kubeconfig file to load instead of the default location.
    """

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        dynamic_client: Any | None = None,
        kubeconfig: Path | None = None,
    ) -> None:
        self._api_client = api_client
        self._dynamic = dynamic_client
        self._kubeconfig = kubeconfig

    def _api(self) -> client.ApiClient:
        if self._api_client is None:
            configuration = client.Configuration()
            try:
                config.load_kube_config(
                    config_file=str(self._kubeconfig) if self._kubeconfig else None,
                    client_configuration=configuration,
                )
            except config.ConfigException as exc:
                msg = f"No usable kubeconfig: {exc}"
                raise ClusterError(msg) from exc
            self._api_client = client.ApiClient(configuration)
        return self._api_client

    def _dynamic_client(self) -> Any:
        if self._dynamic is None:
            try:
                self._dynamic = dynamic.DynamicClient(self._api())
            except (ApiException, urllib3.exceptions.HTTPError) as exc:
                msg = f"Cluster unreachable: {exc}"
                raise ClusterError(msg) from exc
        return self._dynamic

    def ensure_namespace(self, name: str) -> bool:
        """Create namespace *name* if it does not exist.

        Returns:
            True if the namespace was created, False if it already existed.
        """
        core = client.CoreV1Api(self._api())
        try:
            core.read_namespace(name=name)
            logger.info("Namespace '%s' already exists", name)
            return False
        except ApiException as exc:
            if exc.status != 404:
                msg = f"Cannot read namespace '{name}': {exc.reason}"
                raise ClusterError(msg) from exc
        except urllib3.exceptions.HTTPError as exc:
            msg = f"Cluster unreachable: {exc}"
            raise ClusterError(msg) from exc

        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name))
        try:
            core.create_namespace(body=body)
        except ApiException as exc:
            # Another run created it between our read and create.
            if exc.status == 409:
                return False
            msg = f"Cannot create namespace '{name}': {exc.reason}"
            raise ClusterError(msg) from exc
        logger.info("Created namespace '%s'", name)
        return True

    def apply(self, doc: dict[str, Any], namespace: str, field_manager: str) -> str:
        """Server-side apply one manifest into *namespace*.

        Returns:
            The ``Kind/name`` identifier of the applied resource.
        """
        dyn = self._dynamic_client()
        ident = resource_id(doc)
        try:
            resource = dyn.resources.get(api_version=doc["apiVersion"], kind=doc["kind"])
        except ResourceNotFoundError as exc:
            msg = f"{ident}: unknown resource type {doc['apiVersion']}/{doc['kind']}"
            raise ClusterError(msg) from exc

        if resource.namespaced:
            doc = {**doc, "metadata": {**doc["metadata"], "namespace": namespace}}
        try:
            dyn.server_side_apply(
                resource,
                body=doc,
                name=doc["metadata"]["name"],
                namespace=namespace if resource.namespaced else None,
                field_manager=field_manager,
                force_conflicts=True,
            )
        except ApiException as exc:
            msg = f"{ident} rejected by the API server ({exc.status}): {exc.reason}"
            raise ClusterError(msg) from exc
        except urllib3.exceptions.HTTPError as exc:
            msg = f"Cluster unreachable while applying {ident}: {exc}"
            raise ClusterError(msg) from exc
        logger.info("Applied %s in namespace '%s'", ident, namespace)
        return ident
