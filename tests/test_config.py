import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from sdadapter.config import GceConfig, MetadataClient, get_gce_config


class FakeClient:
    def __init__(self, on_gce=True, attributes=None, zone="zone-a", project="my-project",
                 hostname="my-host", fail=()):
        self._on_gce = on_gce
        self._attributes = attributes if attributes is not None else {}
        self._zone = zone
        self._project = project
        self._hostname = hostname
        self._fail = set(fail)

    def on_gce(self):
        return self._on_gce

    def project_id(self):
        if "project" in self._fail:
            raise OSError("no project")
        return self._project

    def instance_attribute(self, name):
        if name not in self._attributes:
            raise OSError(f"{name} not defined")
        return self._attributes[name]

    def zone(self):
        if "zone" in self._fail:
            raise OSError("no zone")
        return self._zone

    def hostname(self):
        if "hostname" in self._fail:
            raise OSError("no hostname")
        return self._hostname


def test_config_trims_attributes():
    client = FakeClient(attributes={"cluster-location": "my-zone\n", "cluster-name": "my-cluster\n"})
    config = get_gce_config(client)
    assert config == GceConfig(project="my-project", location="my-zone",
                               cluster="my-cluster", instance="my-host")


def test_location_falls_back_to_zone():
    client = FakeClient(attributes={"cluster-name": "c"}, zone="zone-b")
    assert get_gce_config(client).location == "zone-b"


def test_not_on_gce():
    with pytest.raises(RuntimeError, match="Not running on GCE."):
        get_gce_config(FakeClient(on_gce=False))


def test_missing_cluster_name():
    with pytest.raises(RuntimeError, match="cluster name"):
        get_gce_config(FakeClient(attributes={"cluster-location": "z"}))


def test_missing_location_and_zone():
    with pytest.raises(RuntimeError, match="cluster location"):
        get_gce_config(FakeClient(attributes={"cluster-name": "c"}, fail={"zone"}))


def test_missing_project_and_hostname():
    attrs = {"cluster-location": "z", "cluster-name": "c"}
    with pytest.raises(RuntimeError, match="project id"):
        get_gce_config(FakeClient(attributes=attrs, fail={"project"}))
    with pytest.raises(RuntimeError, match="hostname"):
        get_gce_config(FakeClient(attributes=attrs, fail={"hostname"}))


_ROUTES = {
    "project/project-id": "proj-1",
    "instance/zone": "projects/1/zones/zone-q",
    "instance/hostname": "node-1\n",
    "instance/attributes/cluster-name": "c1\n",
}


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.headers.get("Metadata-Flavor") != "Google":
            self.send_response(403)
            self.end_headers()
            return
        if self.path == "/":
            body = b""
        else:
            value = _ROUTES.get(self.path[len("/computeMetadata/v1/"):])
            if value is None:
                self.send_response(404)
                self.end_headers()
                return
            body = value.encode()
        self.send_response(200)
        self.send_header("Metadata-Flavor", "Google")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def metadata_host():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def test_metadata_client_against_server(metadata_host):
    client = MetadataClient(host=metadata_host)
    assert client.on_gce() is True
    assert client.project_id() == "proj-1"
    assert client.zone() == "zone-q"
    assert client.hostname() == "node-1"
    assert client.instance_attribute("cluster-name") == "c1\n"
    with pytest.raises(OSError):
        client.instance_attribute("cluster-location")


def test_get_gce_config_against_server(metadata_host):
    config = get_gce_config(MetadataClient(host=metadata_host))
    assert config == GceConfig(project="proj-1", location="zone-q", cluster="c1", instance="node-1")


def test_on_gce_false_when_unreachable():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    assert MetadataClient(host=f"127.0.0.1:{port}", timeout=0.5).on_gce() is False