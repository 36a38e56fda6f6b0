"""Static manifests piped to docker-compose and kubectl.

Each manifest is built as plain Python data and serialised with ruamel.yaml,
so identical configuration always yields byte-identical text. Payloads made
of several Kubernetes objects are emitted as multi-document YAML.

Public API:
    ManifestName: Closed set of manifest names.
    ManifestDocument: A rendered manifest.
    render_manifest: Render a manifest by name.

Example:
    >>> cfg = ClusterConfig()
    >>> doc = render_manifest(ManifestName.NAMESPACE, cfg)
    >>> print(doc.text)
    apiVersion: v1
    kind: Namespace
    ...

"""

from __future__ import annotations

import dataclasses
import enum
import io
import typing as typ

from ruamel.yaml import YAML

if typ.TYPE_CHECKING:
    from kid.config import ClusterConfig

_GCR = "gcr.io/google_containers"
_MANAGED_BY = {"app.kubernetes.io/managed-by": "kid"}


class ManifestName(enum.StrEnum):
    """Names of the manifests kid knows how to render."""

    COMPOSE_FILE = "compose-file"
    NAMESPACE = "namespace"
    DNS_STACK = "dns-stack"
    KUBECONFIG = "kubeconfig"
    BUSYBOX_POD = "busybox-pod"
    NGINX_DEPLOY = "nginx-deploy"


@dataclasses.dataclass(frozen=True, slots=True)
class ManifestDocument:
    """A rendered manifest, ready to be written to a tool's stdin."""

    name: ManifestName
    text: str


def _dump(*documents: dict[str, typ.Any]) -> str:
    yaml_serializer = YAML(typ="safe")
    yaml_serializer.default_flow_style = False
    yaml_serializer.indent(mapping=2, sequence=4, offset=2)
    with io.StringIO() as stream:
        if len(documents) == 1:
            yaml_serializer.dump(documents[0], stream)
        else:
            yaml_serializer.dump_all(list(documents), stream)
        return stream.getvalue()


def _hyperkube_image(cfg: ClusterConfig) -> str:
    return f"{_GCR}/hyperkube-amd64:v{cfg.kubernetes_version}"


def compose_file(cfg: ClusterConfig) -> dict[str, typ.Any]:
    """Return the docker-compose definition of etcd, kubelet and proxy.

    The kubelet starts the API server, controller manager and scheduler from
    the static pod manifests shipped in the hyperkube image.
    """
    hyperkube = _hyperkube_image(cfg)
    return {
        "version": "2",
        "services": {
            "etcd": {
                "image": f"{_GCR}/etcd-amd64:{cfg.etcd_version}",
                "network_mode": "host",
                "command": [
                    "/usr/local/bin/etcd",
                    "--listen-client-urls=http://127.0.0.1:4001",
                    "--advertise-client-urls=http://127.0.0.1:4001",
                    "--data-dir=/var/etcd/data",
                ],
            },
            "master": {
                "image": hyperkube,
                "network_mode": "host",
                "pid": "host",
                "privileged": True,
                "depends_on": ["etcd"],
                "volumes": [
                    "/:/rootfs:ro",
                    "/sys:/sys:ro",
                    "/var/lib/docker/:/var/lib/docker:rw",
                    "/var/lib/kubelet/:/var/lib/kubelet:rw,shared",
                    "/var/run:/var/run:rw",
                ],
                "command": [
                    "/hyperkube",
                    "kubelet",
                    "--containerized",
                    "--hostname-override=127.0.0.1",
                    "--address=0.0.0.0",
                    f"--api-servers=http://localhost:{cfg.api_port}",
                    "--config=/etc/kubernetes/manifests",
                    f"--cluster-dns={cfg.dns_server_ip}",
                    f"--cluster-domain={cfg.dns_domain}",
                    "--allow-privileged=true",
                    "--v=2",
                ],
            },
            "proxy": {
                "image": hyperkube,
                "network_mode": "host",
                "privileged": True,
                "depends_on": ["master"],
                "command": [
                    "/hyperkube",
                    "proxy",
                    f"--master=http://127.0.0.1:{cfg.api_port}",
                    "--v=2",
                ],
            },
        },
    }


def namespace(cfg: ClusterConfig) -> dict[str, typ.Any]:
    """Return the namespace the DNS add-on lives in."""
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {"name": cfg.dns_namespace, "labels": dict(_MANAGED_BY)},
    }


def _dns_labels() -> dict[str, str]:
    return {
        "k8s-app": "kube-dns",
        "version": "v10",
        "kubernetes.io/cluster-service": "true",
    }


def dns_replication_controller(
    cfg: ClusterConfig, api_host: str
) -> dict[str, typ.Any]:
    """Return the ``kube-dns-v10`` ReplicationController.

    Args:
        cfg: Configuration with DNS domain, namespace and API port.
        api_host: Address pods use to reach the API server.

    Returns:
        Manifest data for the ReplicationController.

    """
    labels = _dns_labels()
    return {
        "apiVersion": "v1",
        "kind": "ReplicationController",
        "metadata": {
            "name": "kube-dns-v10",
            "namespace": cfg.dns_namespace,
            "labels": {**labels, **_MANAGED_BY},
        },
        "spec": {
            "replicas": cfg.dns_replicas,
            "selector": {"k8s-app": "kube-dns", "version": "v10"},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "dnsPolicy": "Default",
                    "containers": [
                        {
                            "name": "etcd",
                            "image": f"{_GCR}/etcd-amd64:{cfg.etcd_version}",
                            "resources": {
                                "limits": {"cpu": "100m", "memory": "50Mi"},
                            },
                            "command": [
                                "/usr/local/bin/etcd",
                                "-data-dir",
                                "/var/etcd/data",
                                "-listen-client-urls",
                                "http://127.0.0.1:2379,http://127.0.0.1:4001",
                                "-advertise-client-urls",
                                "http://127.0.0.1:2379,http://127.0.0.1:4001",
                                "-initial-cluster-token",
                                "skydns-etcd",
                            ],
                            "volumeMounts": [
                                {"name": "etcd-storage", "mountPath": "/var/etcd/data"}
                            ],
                        },
                        {
                            "name": "kube2sky",
                            "image": f"{_GCR}/kube2sky:1.12",
                            "resources": {
                                "limits": {"cpu": "100m", "memory": "50Mi"},
                            },
                            "args": [
                                f"--domain={cfg.dns_domain}",
                                f"--kube_master_url=http://{api_host}:{cfg.api_port}",
                            ],
                        },
                        {
                            "name": "skydns",
                            "image": f"{_GCR}/skydns:2015-10-13-8c72f8c",
                            "resources": {
                                "limits": {"cpu": "100m", "memory": "50Mi"},
                            },
                            "args": [
                                "-machines=http://127.0.0.1:4001",
                                "-addr=0.0.0.0:53",
                                "-ns-rotate=false",
                                f"-domain={cfg.dns_domain}.",
                            ],
                            "ports": [
                                {"containerPort": 53, "name": "dns", "protocol": "UDP"},
                                {
                                    "containerPort": 53,
                                    "name": "dns-tcp",
                                    "protocol": "TCP",
                                },
                            ],
                        },
                        {
                            "name": "healthz",
                            "image": f"{_GCR}/exechealthz:1.0",
                            "resources": {
                                "limits": {"cpu": "10m", "memory": "20Mi"},
                            },
                            "args": [
                                "-cmd=nslookup kubernetes.default.svc."
                                f"{cfg.dns_domain} 127.0.0.1 >/dev/null",
                                "-port=8080",
                            ],
                            "ports": [{"containerPort": 8080, "protocol": "TCP"}],
                        },
                    ],
                    "volumes": [{"name": "etcd-storage", "emptyDir": {}}],
                },
            },
        },
    }


def dns_service(cfg: ClusterConfig) -> dict[str, typ.Any]:
    """Return the ``kube-dns`` Service on the fixed cluster DNS address."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": "kube-dns",
            "namespace": cfg.dns_namespace,
            "labels": {
                "k8s-app": "kube-dns",
                "kubernetes.io/cluster-service": "true",
                "kubernetes.io/name": "KubeDNS",
                **_MANAGED_BY,
            },
        },
        "spec": {
            "selector": {"k8s-app": "kube-dns"},
            "clusterIP": cfg.dns_server_ip,
            "ports": [
                {"name": "dns", "port": 53, "protocol": "UDP"},
                {"name": "dns-tcp", "port": 53, "protocol": "TCP"},
            ],
        },
    }


def kubeconfig(cfg: ClusterConfig) -> dict[str, typ.Any]:
    """Return a client config for the local cluster with an anonymous user."""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": "local", "cluster": {"server": cfg.api_url}}],
        "contexts": [
            {"name": "local", "context": {"cluster": "local", "user": ""}}
        ],
        "current-context": "local",
        "preferences": {},
        "users": [],
    }


def busybox_pod(_cfg: ClusterConfig) -> dict[str, typ.Any]:
    """Return the busybox Pod used for DNS smoke tests."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": "busybox",
            "namespace": "default",
            "labels": {"app": "busybox", **_MANAGED_BY},
        },
        "spec": {
            "containers": [
                {
                    "name": "busybox",
                    "image": "busybox",
                    "imagePullPolicy": "IfNotPresent",
                    "command": ["sleep", "3600"],
                }
            ],
            "restartPolicy": "Always",
        },
    }


def nginx_deployment(_cfg: ClusterConfig) -> dict[str, typ.Any]:
    """Return a single-replica nginx Deployment."""
    labels = {"run": "nginx"}
    return {
        "apiVersion": "extensions/v1beta1",
        "kind": "Deployment",
        "metadata": {
            "name": "nginx",
            "namespace": "default",
            "labels": {**labels, **_MANAGED_BY},
        },
        "spec": {
            "replicas": 1,
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [
                        {
                            "name": "nginx",
                            "image": "nginx",
                            "ports": [{"containerPort": 80}],
                        }
                    ]
                },
            },
        },
    }


def nginx_service(_cfg: ClusterConfig) -> dict[str, typ.Any]:
    """Return the Service exposing the nginx Deployment on port 80."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": "nginx",
            "namespace": "default",
            "labels": {"run": "nginx", **_MANAGED_BY},
        },
        "spec": {
            "selector": {"run": "nginx"},
            "ports": [{"port": 80, "protocol": "TCP", "targetPort": 80}],
        },
    }


def render_manifest(
    name: ManifestName | str,
    cfg: ClusterConfig,
    *,
    api_host: str = "127.0.0.1",
) -> ManifestDocument:
    """Render the manifest called ``name`` for ``cfg``.

    Args:
        name: A ``ManifestName`` or its string value.
        cfg: Configuration supplying ports, versions and DNS settings.
        api_host: Address the DNS add-on uses to reach the API server.

    Returns:
        The rendered document.

    Raises:
        ValueError: If ``name`` is not a known manifest.

    """
    manifest = ManifestName(name)
    builders: dict[ManifestName, typ.Callable[[], tuple[dict[str, typ.Any], ...]]] = {
        ManifestName.COMPOSE_FILE: lambda: (compose_file(cfg),),
        ManifestName.NAMESPACE: lambda: (namespace(cfg),),
        ManifestName.DNS_STACK: lambda: (
            dns_replication_controller(cfg, api_host),
            dns_service(cfg),
        ),
        ManifestName.KUBECONFIG: lambda: (kubeconfig(cfg),),
        ManifestName.BUSYBOX_POD: lambda: (busybox_pod(cfg),),
        ManifestName.NGINX_DEPLOY: lambda: (
            nginx_deployment(cfg),
            nginx_service(cfg),
        ),
    }
    return ManifestDocument(name=manifest, text=_dump(*builders[manifest]()))
