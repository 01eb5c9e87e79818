import json

import httpx
import pytest

from nodeagent.configurator import Configurator
from nodeagent.errors import ConfigurePushError, StoreError
from nodeagent.lifecycle import ServiceManager
from nodeagent.registry import ServiceRegistry, ServiceSpec

from conftest import FakeStore


class ControlPlanes:
    """Records configure calls; ports listed in ``failing`` answer 500."""

    def __init__(self):
        self.requests: list[tuple[str, dict]] = []
        self.failing: set[int] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((str(request.url), json.loads(request.content)))
        if request.url.port in self.failing:
            return httpx.Response(500, json={"error": "boom"})
        return httpx.Response(200, json={})


@pytest.fixture
def planes():
    return ControlPlanes()


@pytest.fixture
def config_store():
    return FakeStore(
        {
            "instances/i-1/services/LB/frontends/web/port": "80",
            "instances/i-1/services/LB2/x": "y",
            "instances/i-1/services/DNS/": None,
        }
    )


@pytest.fixture
def configurator(runtime, config_store, planes):
    registry = ServiceRegistry(
        {
            "LB": ServiceSpec(image="lb"),
            "LB2": ServiceSpec(image="lb2"),
            "DNS": ServiceSpec(image="dns", control_port=6000),
        }
    )
    manager = ServiceManager(runtime, registry, instance_id="i-1", config_dir="/cfg")
    return Configurator(manager, config_store, registry, instance_id="i-1", transport=httpx.MockTransport(planes))


def test_pushes_service_subdocument_to_published_port(configurator, runtime, config_store, planes):
    runtime.add_service("LB", ports={50052: 32768, 80: 32769})

    assert configurator.configure_service("LB") == 1

    (url, body), = planes.requests
    assert url == "http://localhost:32768/configure"
    assert json.loads(body["config"]) == {"frontends": {"web": {"port": "80"}}}
    assert config_store.list_calls == ["instances/i-1/services/LB/"]


def test_uses_registry_control_port(configurator, runtime, planes):
    runtime.add_service("DNS", ports={50052: 1111, 6000: 2222})
    configurator.configure_service("DNS")
    assert [u for u, _ in planes.requests] == ["http://localhost:2222/configure"]
    assert json.loads(planes.requests[0][1]["config"]) == {}


def test_no_published_control_port_is_skipped(configurator, runtime, config_store, planes, journal):
    runtime.add_service("LB", ports={80: 32769})
    assert configurator.configure_service("LB") == 0
    assert planes.requests == []
    assert config_store.list_calls == []
    assert any(e["level"] == "WARN" and e["service_name"] == "LB" for e in journal.latest_events())


def test_not_running_is_noop(configurator, planes):
    assert configurator.configure_service("LB") == 0
    assert planes.requests == []


def test_delivery_failure_is_raised(configurator, runtime, planes):
    runtime.add_service("LB", ports={50052: 40000})
    planes.failing.add(40000)
    with pytest.raises(ConfigurePushError) as exc:
        configurator.configure_service("LB")
    assert exc.value.service == "LB"


def test_batch_collects_errors_without_aborting(configurator, runtime, config_store, planes):
    runtime.add_service("LB", ports={50052: 40000})
    runtime.add_service("LB2", ports={50052: 40001})
    runtime.add_service("DNS", ports={6000: 40002})
    planes.failing.add(40000)

    report = configurator.configure_services({"LB", "LB2", "DNS"})

    assert [e.service for e in report.errors] == ["LB"]
    assert report.configured == ["DNS", "LB2"]
    ports = sorted(httpx.URL(u).port for u, _ in planes.requests)
    assert ports == [40000, 40001, 40002]


def test_store_failure_is_collected(configurator, runtime, config_store):
    runtime.add_service("LB", ports={50052: 40000})
    config_store.error = StoreError("consul down")
    report = configurator.configure_services(["LB"])
    assert len(report.errors) == 1 and "consul down" in str(report.errors[0])
    assert report.configured == []


def test_skipped_services_are_not_reported_configured(configurator, runtime, planes):
    runtime.add_service("LB", ports={80: 32769})
    runtime.add_service("LB2", ports={50052: 40001})
    report = configurator.configure_services(["LB", "LB2"])
    assert report.configured == ["LB2"]
    assert report.errors == []
