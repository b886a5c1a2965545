"""Tests for reconciling load balancers with services."""

from __future__ import annotations

import pytest
from safir.testing.kubernetes import MockKubernetesApi
from safir.testing.slack import MockSlackWebhook

from lbcontroller.constants import (
    ANNOTATION_SSL_PORTS,
    ANNOTATION_TLS_SECRET,
)
from lbcontroller.exceptions import (
    InvalidAnnotationError,
    NoAddressError,
    RemoteOperationError,
    UnsupportedProtocolError,
)
from lbcontroller.factory import Factory
from lbcontroller.services.loadbalancer import LoadBalancerManager

from ..support.data import make_node, make_service, make_tls_secret
from ..support.loadbalancer import MockLoadBalancerClient
from ..support.security import MockSecurityRuleClient

CLUSTER = "test-cluster"
NAME = "web-a3a7c1e4f0b1d4c9e9f5a2d6b8e0c1a2"
NODES = [make_node("node-1", "10.0.0.1"), make_node("node-2", "10.0.0.2")]


@pytest.mark.asyncio
async def test_create(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    service = make_service()
    assert await manager.get_load_balancer(CLUSTER, service) is None

    status = await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert [i.ip for i in status.ingress] == ["203.0.113.10"]
    assert mock_load_balancer.mutations == [
        ("create_and_await_load_balancer", NAME),
        ("create_and_await_backend_set", "TCP-80"),
        ("create_and_await_listener", "TCP-80"),
    ]
    assert mock_load_balancer.pending_work_requests == set()

    load_balancer = mock_load_balancer.get_load_balancer_for_test(NAME)
    assert load_balancer
    assert load_balancer.shape == "100Mbps"
    assert load_balancer.subnet_ids == [
        "ocid1.subnet.oc1.phx.subnet1",
        "ocid1.subnet.oc1.phx.subnet2",
    ]
    assert list(load_balancer.listeners) == ["TCP-80"]
    backends = load_balancer.backend_sets["TCP-80"].backends
    assert [b.target for b in backends] == [
        "10.0.0.1:30080",
        "10.0.0.2:30080",
    ]

    assert len(mock_security.updates) == 1
    update = mock_security.updates[0]
    assert update.added_ports == {30080}
    assert update.removed_ports == set()
    assert update.node_ips == ("10.0.0.1", "10.0.0.2")

    status = await manager.get_load_balancer(CLUSTER, service)
    assert status
    assert [i.ip for i in status.ingress] == ["203.0.113.10"]


@pytest.mark.asyncio
async def test_converged(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    service = make_service([("TCP", 80, 30080), ("TCP", 443, 30443)])
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    before = mock_load_balancer.get_load_balancer_for_test(NAME)
    mock_load_balancer.calls.clear()

    await manager.update_load_balancer(CLUSTER, service, NODES)
    assert mock_load_balancer.mutations == []
    assert mock_load_balancer.get_load_balancer_for_test(NAME) == before

    # The ports in use are reopened on every pass.
    assert len(mock_security.updates) == 2
    update = mock_security.updates[-1]
    assert update.added_ports == {30080, 30443}
    assert update.removed_ports == set()
    assert mock_security.open_ports == {30080, 30443}


@pytest.mark.parametrize(
    ("first", "second"),
    [
        ([443, 80, 8080], [9090, 80, 8443]),
        ([8080, 80, 443], [8443, 80, 9090]),
    ],
)
@pytest.mark.asyncio
async def test_order(
    first: list[int],
    second: list[int],
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    service = make_service([("TCP", p, 30000 + p) for p in first])
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert mock_load_balancer.mutations == [
        ("create_and_await_load_balancer", NAME),
        ("create_and_await_backend_set", "TCP-443"),
        ("create_and_await_listener", "TCP-443"),
        ("create_and_await_backend_set", "TCP-80"),
        ("create_and_await_listener", "TCP-80"),
        ("create_and_await_backend_set", "TCP-8080"),
        ("create_and_await_listener", "TCP-8080"),
    ]
    mock_load_balancer.calls.clear()

    service = make_service([("TCP", p, 30000 + p) for p in second])
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert mock_load_balancer.mutations == [
        ("create_and_await_backend_set", "TCP-8443"),
        ("create_and_await_listener", "TCP-8443"),
        ("create_and_await_backend_set", "TCP-9090"),
        ("create_and_await_listener", "TCP-9090"),
        ("delete_listener", "TCP-443"),
        ("delete_backend_set", "TCP-443"),
        ("delete_listener", "TCP-8080"),
        ("delete_backend_set", "TCP-8080"),
    ]
    assert mock_security.open_ports == {30080, 38443, 39090}


@pytest.mark.asyncio
async def test_nodes_change(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    service = make_service()
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    mock_load_balancer.calls.clear()

    nodes = [make_node("node-1", "10.0.0.1"), make_node("node-3", "10.0.0.3")]
    await manager.ensure_load_balancer(CLUSTER, service, nodes)
    assert mock_load_balancer.mutations == [
        ("create_backend", "TCP-80", "10.0.0.3:30080"),
        ("delete_backend", "TCP-80", "10.0.0.2:30080"),
    ]
    assert mock_load_balancer.pending_work_requests == set()

    load_balancer = mock_load_balancer.get_load_balancer_for_test(NAME)
    assert load_balancer
    backends = load_balancer.backend_sets["TCP-80"].backends
    assert sorted(b.target for b in backends) == [
        "10.0.0.1:30080",
        "10.0.0.3:30080",
    ]

    # The node port stays open since other nodes still use it.
    update = mock_security.updates[-1]
    assert update.added_ports == {30080}
    assert update.removed_ports == set()
    assert mock_security.open_ports == {30080}


@pytest.mark.asyncio
async def test_no_nodes(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    service = make_service()
    await manager.ensure_load_balancer(CLUSTER, service, [])
    load_balancer = mock_load_balancer.get_load_balancer_for_test(NAME)
    assert load_balancer
    assert load_balancer.backend_sets["TCP-80"].backends == []
    assert mock_security.updates == []

    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert mock_security.open_ports == {30080}
    load_balancer = mock_load_balancer.get_load_balancer_for_test(NAME)
    assert load_balancer
    assert len(load_balancer.backend_sets["TCP-80"].backends) == 2


@pytest.mark.asyncio
async def test_ports_change(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    await manager.ensure_load_balancer(CLUSTER, make_service(), NODES)
    mock_load_balancer.calls.clear()

    service = make_service([("TCP", 443, 30443)])
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert mock_load_balancer.mutations == [
        ("create_and_await_backend_set", "TCP-443"),
        ("create_and_await_listener", "TCP-443"),
        ("delete_listener", "TCP-80"),
        ("delete_backend_set", "TCP-80"),
    ]
    assert mock_load_balancer.pending_work_requests == set()

    load_balancer = mock_load_balancer.get_load_balancer_for_test(NAME)
    assert load_balancer
    assert list(load_balancer.listeners) == ["TCP-443"]
    assert list(load_balancer.backend_sets) == ["TCP-443"]

    update = mock_security.updates[-1]
    assert update.added_ports == {30443}
    assert update.removed_ports == {30080}
    assert mock_security.open_ports == {30443}


@pytest.mark.asyncio
async def test_tls(
    manager: LoadBalancerManager,
    mock_kubernetes: MockKubernetesApi,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    secret = make_tls_secret("tls", "default")
    await mock_kubernetes.create_namespaced_secret("default", secret)

    # Start without TLS, then enable it on the existing port.
    ports = [("TCP", 443, 30443)]
    await manager.ensure_load_balancer(CLUSTER, make_service(ports), NODES)
    mock_load_balancer.calls.clear()

    annotations = {
        ANNOTATION_SSL_PORTS: "443",
        ANNOTATION_TLS_SECRET: "tls",
    }
    service = make_service(ports, annotations=annotations)
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    tls_listener = f"TCP-443-{NAME}"
    assert mock_load_balancer.mutations == [
        ("create_and_await_certificate", NAME),
        ("create_and_await_listener", tls_listener),
        ("delete_listener", "TCP-443"),
    ]

    load_balancer = mock_load_balancer.get_load_balancer_for_test(NAME)
    assert load_balancer
    assert list(load_balancer.listeners) == [tls_listener]
    listener = load_balancer.listeners[tls_listener]
    assert listener.ssl_config
    assert listener.ssl_config.certificate_name == NAME
    assert list(load_balancer.backend_sets) == ["TCP-443"]
    assert mock_security.open_ports == {30443}

    # Converged, including the certificate.
    mock_load_balancer.calls.clear()
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert mock_load_balancer.mutations == []


@pytest.mark.asyncio
async def test_invalid_service(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    service = make_service([("UDP", 53, 30053)])
    with pytest.raises(UnsupportedProtocolError):
        await manager.ensure_load_balancer(CLUSTER, service, NODES)

    service = make_service(annotations={ANNOTATION_SSL_PORTS: "abc"})
    with pytest.raises(InvalidAnnotationError):
        await manager.ensure_load_balancer(CLUSTER, service, NODES)

    assert mock_load_balancer.calls == []
    assert mock_security.updates == []


@pytest.mark.asyncio
async def test_failure(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    service = make_service()
    mock_load_balancer.fail_for_test("create_and_await_listener")
    with pytest.raises(RemoteOperationError):
        await manager.ensure_load_balancer(CLUSTER, service, NODES)

    # Earlier changes are kept and the security rules were never saved.
    load_balancer = mock_load_balancer.get_load_balancer_for_test(NAME)
    assert load_balancer
    assert list(load_balancer.backend_sets) == ["TCP-80"]
    assert load_balancer.listeners == {}
    assert mock_security.updates == []

    # The next pass continues from the partial state.
    mock_load_balancer.calls.clear()
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert mock_load_balancer.mutations == [
        ("create_and_await_listener", "TCP-80"),
    ]
    assert mock_security.open_ports == {30080}


@pytest.mark.asyncio
async def test_security_failure(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    service = make_service()
    mock_security.fail_for_test()
    with pytest.raises(RemoteOperationError):
        await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert mock_security.updates == []
    assert mock_security.open_ports == set()
    assert mock_load_balancer.get_load_balancer_for_test(NAME)

    # The load balancer has converged, but the port is still opened.
    mock_load_balancer.calls.clear()
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert mock_load_balancer.mutations == []
    assert mock_security.open_ports == {30080}


@pytest.mark.asyncio
async def test_backend_failure(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    await manager.ensure_load_balancer(CLUSTER, make_service(), NODES)

    # Add a port and drop a node, failing after the new listener exists.
    service = make_service([("TCP", 80, 30080), ("TCP", 443, 30443)])
    nodes = [make_node("node-1", "10.0.0.1")]
    mock_load_balancer.fail_for_test("delete_backend")
    with pytest.raises(RemoteOperationError):
        await manager.ensure_load_balancer(CLUSTER, service, nodes)
    assert mock_security.open_ports == {30080}

    mock_load_balancer.calls.clear()
    await manager.ensure_load_balancer(CLUSTER, service, nodes)
    assert mock_load_balancer.mutations == [
        ("delete_backend", "TCP-80", "10.0.0.2:30080"),
    ]
    assert mock_security.open_ports == {30080, 30443}


@pytest.mark.asyncio
async def test_no_address(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    mock_load_balancer.set_addresses_for_test([])
    service = make_service()
    with pytest.raises(NoAddressError):
        await manager.ensure_load_balancer(CLUSTER, service, NODES)

    # Reconciliation completed before the status was built.
    assert mock_security.open_ports == {30080}
    with pytest.raises(NoAddressError):
        await manager.get_load_balancer(CLUSTER, service)


@pytest.mark.asyncio
async def test_delete(
    manager: LoadBalancerManager,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> None:
    service = make_service([("TCP", 80, 30080), ("TCP", 443, 30443)])
    await manager.ensure_load_balancer(CLUSTER, service, NODES)
    load_balancer = mock_load_balancer.get_load_balancer_for_test(NAME)
    assert load_balancer
    mock_load_balancer.calls.clear()

    await manager.ensure_load_balancer_deleted(CLUSTER, service)
    assert mock_load_balancer.mutations == [
        ("delete_load_balancer", load_balancer.id),
    ]
    assert mock_load_balancer.pending_work_requests == set()
    assert mock_load_balancer.get_load_balancer_for_test(NAME) is None

    update = mock_security.updates[-1]
    assert update.added_ports == set()
    assert update.removed_ports == {30080, 30443}
    assert update.node_ips == ("10.0.0.1", "10.0.0.2")
    assert mock_security.open_ports == set()

    # Deleting again is a no-op.
    mock_load_balancer.calls.clear()
    await manager.ensure_load_balancer_deleted(CLUSTER, service)
    assert mock_load_balancer.mutations == []
    assert len(mock_security.updates) == 2
    assert await manager.get_load_balancer(CLUSTER, service) is None


@pytest.mark.asyncio
async def test_slack(
    factory: Factory,
    mock_load_balancer: MockLoadBalancerClient,
    mock_slack: MockSlackWebhook,
) -> None:
    manager = factory.create_load_balancer_manager()

    # Problems with the service itself are not reported.
    service = make_service([("UDP", 53, 30053)])
    with pytest.raises(UnsupportedProtocolError):
        await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert mock_slack.messages == []

    service = make_service()
    mock_load_balancer.fail_for_test("create_and_await_load_balancer")
    with pytest.raises(RemoteOperationError):
        await manager.ensure_load_balancer(CLUSTER, service, NODES)
    assert len(mock_slack.messages) == 1
    message = mock_slack.messages[0]
    assert message["blocks"][0]["text"]["text"] == "Injected failure"
    fields = [f["text"] for f in message["blocks"][1]["fields"]]
    assert "*Exception type*\nRemoteOperationError" in fields
    assert "*User*\ndefault/web" in fields
    assert "*Operation*\ncreate_and_await_load_balancer" in fields

    mock_load_balancer.fail_for_test("get_load_balancer_by_name")
    with pytest.raises(RemoteOperationError):
        await manager.ensure_load_balancer_deleted(CLUSTER, service)
    assert len(mock_slack.messages) == 2

    mock_load_balancer.fail_for_test("get_load_balancer_by_name")
    with pytest.raises(RemoteOperationError):
        await manager.get_load_balancer(CLUSTER, service)
    assert len(mock_slack.messages) == 3
    message = mock_slack.messages[2]
    fields = [f["text"] for f in message["blocks"][1]["fields"]]
    assert "*Operation*\nget_load_balancer_by_name" in fields
