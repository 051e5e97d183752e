"""
Kubernetes API server backend for the object store.
"""

import base64
import json
import os
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Tuple, Union

import httpx
import yaml

from kuberules.shared.config import StoreConfig
from kuberules.shared.errors import (
    AlreadyExistsError, NotFoundError, TransportError, WatchExpiredError
)
from kuberules.shared.logging import get_logger
from .backend import ListResult, ObjectStoreBackend, RawEventType, RawWatchEvent, ResourceKind


SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
DEFAULT_KUBECONFIG = Path.home() / ".kube" / "config"
DEFAULT_GRACE_PERIOD_SECONDS = 0

logger = get_logger("kuberules.store.kube")


@dataclass
class KubeConnection:
    """Resolved API server endpoint and credentials."""
    server: str
    token: Optional[str] = None
    verify: Union[bool, ssl.SSLContext] = True


def _write_temp(data: str, suffix: str) -> str:
    handle = tempfile.NamedTemporaryFile("w", suffix=suffix, delete=False)
    with handle:
        handle.write(data)
    return handle.name


def _decode(data: str) -> str:
    return base64.b64decode(data).decode("utf-8")


def _ssl_context(cluster: Dict[str, Any], user: Dict[str, Any], base_dir: Path) -> Union[bool, ssl.SSLContext]:
    if cluster.get("insecure-skip-tls-verify"):
        return False

    context = ssl.create_default_context()
    if cluster.get("certificate-authority-data"):
        context.load_verify_locations(cadata=_decode(cluster["certificate-authority-data"]))
    elif cluster.get("certificate-authority"):
        context.load_verify_locations(cafile=str(base_dir / cluster["certificate-authority"]))

    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    temp_files = []
    try:
        if user.get("client-certificate-data"):
            cert_file = _write_temp(_decode(user["client-certificate-data"]), ".crt")
            temp_files.append(cert_file)
        elif user.get("client-certificate"):
            cert_file = str(base_dir / user["client-certificate"])
        if user.get("client-key-data"):
            key_file = _write_temp(_decode(user["client-key-data"]), ".key")
            temp_files.append(key_file)
        elif user.get("client-key"):
            key_file = str(base_dir / user["client-key"])
        if cert_file:
            context.load_cert_chain(cert_file, key_file)
    except (OSError, ssl.SSLError) as e:
        raise TransportError(f"Cannot load client certificate: {e}") from e
    finally:
        # the context holds the key material once loaded
        for name in temp_files:
            os.unlink(name)
    return context


def _named(entries: Any, name: str, section: str) -> Dict[str, Any]:
    for entry in entries or []:
        if entry.get("name") == name:
            return entry.get(section) or {}
    raise TransportError(f"kubeconfig has no {section} named {name!r}")


def load_kubeconfig(path: Path, context_name: Optional[str] = None) -> KubeConnection:
    """Resolve a connection from a kubeconfig file."""
    try:
        with open(path, "r") as f:
            kubeconfig = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise TransportError(f"Cannot read kubeconfig {path}: {e}") from e

    context_name = context_name or kubeconfig.get("current-context")
    if not context_name:
        raise TransportError(f"kubeconfig {path} has no current-context")

    context = _named(kubeconfig.get("contexts"), context_name, "context")
    cluster = _named(kubeconfig.get("clusters"), context.get("cluster", ""), "cluster")
    user = _named(kubeconfig.get("users"), context["user"], "user") if context.get("user") else {}

    token = user.get("token")
    if not token and user.get("tokenFile"):
        token = Path(user["tokenFile"]).read_text().strip()

    server = cluster.get("server")
    if not server:
        raise TransportError(f"kubeconfig cluster {context.get('cluster')!r} has no server")

    return KubeConnection(
        server=server,
        token=token,
        verify=_ssl_context(cluster, user, path.parent)
    )


def load_in_cluster() -> KubeConnection:
    """Resolve a connection from the pod's service account."""
    host = os.environ.get("KUBERNETES_SERVICE_HOST")
    port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
    token_file = SERVICE_ACCOUNT_DIR / "token"
    if not host or not token_file.exists():
        raise TransportError("Not running inside a cluster and no kubeconfig found")

    context = ssl.create_default_context(cafile=str(SERVICE_ACCOUNT_DIR / "ca.crt"))
    if ":" in host:
        host = f"[{host}]"
    return KubeConnection(
        server=f"https://{host}:{port}",
        token=token_file.read_text().strip(),
        verify=context
    )


def load_kube_connection(config: StoreConfig) -> KubeConnection:
    """Resolve the API server connection the way kubectl does."""
    if config.server:
        return KubeConnection(server=config.server, token=config.token, verify=config.verify_tls)

    if config.kubeconfig:
        return load_kubeconfig(Path(config.kubeconfig), config.context)

    env_paths = [p for p in os.environ.get("KUBECONFIG", "").split(os.pathsep) if p]
    for candidate in [Path(p) for p in env_paths] + [DEFAULT_KUBECONFIG]:
        if candidate.exists():
            return load_kubeconfig(candidate, config.context)

    return load_in_cluster()


def _escape_selector_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=")


def label_selector(labels: Optional[Dict[str, str]]) -> Optional[str]:
    if not labels:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def field_selector(fields: Optional[Dict[str, str]]) -> Optional[str]:
    if not fields:
        return None
    return ",".join(f"{key}={_escape_selector_value(value)}" for key, value in sorted(fields.items()))


class KubeObjectStore(ObjectStoreBackend):
    """Object store backed by a Kubernetes API server."""

    def __init__(self,
                 connection: KubeConnection,
                 timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.connection = connection
        self.timeout = timeout
        headers = {"Accept": "application/json"}
        if connection.token:
            headers["Authorization"] = f"Bearer {connection.token}"
        self.client = httpx.AsyncClient(
            base_url=connection.server.rstrip("/"),
            headers=headers,
            verify=connection.verify,
            timeout=timeout,
            transport=transport
        )

    @classmethod
    def from_config(cls, config: StoreConfig) -> "KubeObjectStore":
        connection = load_kube_connection(config)
        logger.info("Connecting to API server", server=connection.server)
        return cls(connection, timeout=config.request_timeout)

    @staticmethod
    def _path(kind: ResourceKind, namespace: str, name: Optional[str] = None) -> str:
        prefix = f"/apis/{kind.group}/{kind.version}" if kind.group else f"/api/{kind.version}"
        path = f"{prefix}/namespaces/{namespace}/{kind.plural}"
        if name:
            path = f"{path}/{name}"
        return path

    @staticmethod
    def _params(**params: Optional[str]) -> Dict[str, str]:
        return {key: value for key, value in params.items() if value is not None}

    @staticmethod
    def _status(response: httpx.Response) -> Tuple[str, str]:
        try:
            body = response.json()
        except ValueError:
            return "", response.text
        return body.get("reason", ""), body.get("message", response.text)

    def _raise_for_status(self, response: httpx.Response, name: str = "") -> None:
        if response.status_code < 400:
            return
        reason, message = self._status(response)
        if response.status_code == 404:
            raise NotFoundError(name or str(response.url.path))
        if response.status_code == 409 and reason == "AlreadyExists":
            raise AlreadyExistsError(name)
        if response.status_code == 410:
            raise WatchExpiredError(None, details={"message": message})
        raise TransportError(
            f"API server returned {response.status_code}: {message}",
            details={"status_code": response.status_code, "reason": reason}
        )

    async def _request(self, method: str, url: str, name: str = "", **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        self._raise_for_status(response, name)
        return response

    async def create(self, kind: ResourceKind, namespace: str, manifest: Dict[str, Any]) -> Dict[str, Any]:
        name = manifest.get("metadata", {}).get("name", "")
        response = await self._request("POST", self._path(kind, namespace), name=name, json=manifest)
        return response.json()

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        response = await self._request("GET", self._path(kind, namespace, name), name=name)
        return response.json()

    async def list(self, kind: ResourceKind, namespace: str,
                   labels: Optional[Dict[str, str]] = None) -> ListResult:
        response = await self._request(
            "GET",
            self._path(kind, namespace),
            params=self._params(labelSelector=label_selector(labels))
        )
        body = response.json()
        return ListResult(
            items=body.get("items") or [],
            resource_version=(body.get("metadata") or {}).get("resourceVersion")
        )

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        await self._request(
            "DELETE",
            self._path(kind, namespace, name),
            name=name,
            params={"gracePeriodSeconds": str(DEFAULT_GRACE_PERIOD_SECONDS)}
        )

    async def delete_collection(self, kind: ResourceKind, namespace: str,
                                labels: Optional[Dict[str, str]] = None,
                                fields: Optional[Dict[str, str]] = None) -> None:
        await self._request(
            "DELETE",
            self._path(kind, namespace),
            params=self._params(
                labelSelector=label_selector(labels),
                fieldSelector=field_selector(fields),
                gracePeriodSeconds=str(DEFAULT_GRACE_PERIOD_SECONDS)
            )
        )

    async def watch(self, kind: ResourceKind, namespace: str,
                    labels: Optional[Dict[str, str]] = None,
                    resource_version: Optional[str] = None,
                    timeout_seconds: Optional[int] = None) -> AsyncIterator[RawWatchEvent]:
        params = self._params(
            watch="1",
            allowWatchBookmarks="true",
            resourceVersion=resource_version,
            labelSelector=label_selector(labels),
            timeoutSeconds=str(timeout_seconds) if timeout_seconds else None
        )
        read_timeout = timeout_seconds + self.timeout if timeout_seconds else None
        try:
            async with self.client.stream(
                "GET",
                self._path(kind, namespace),
                params=params,
                timeout=httpx.Timeout(self.timeout, read=read_timeout)
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except ValueError as e:
                        raise TransportError(f"Malformed watch event: {line[:200]}") from e
                    event_type = data.get("type")
                    obj = data.get("object") or {}
                    if event_type == "ERROR":
                        if obj.get("code") == 410:
                            raise WatchExpiredError(resource_version, details={"message": obj.get("message")})
                        raise TransportError(
                            f"Watch error: {obj.get('message')}",
                            details={"status_code": obj.get("code"), "reason": obj.get("reason")}
                        )
                    try:
                        raw_type = RawEventType(event_type)
                    except ValueError as e:
                        raise TransportError(f"Unknown watch event type {event_type!r}") from e
                    yield RawWatchEvent(raw_type, obj)
        except httpx.HTTPError as e:
            raise TransportError(f"Watch stream failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()
