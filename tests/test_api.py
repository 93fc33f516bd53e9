from tests.cluster_utils import command_error
from walkthroughs.models import User
from walkthroughs.services.namespaces import namespace_for_user

ROUTE_TEMPLATE = {
    "apiVersion": "route.openshift.io/v1",
    "kind": "Route",
    "metadata": {"name": "app"},
    "spec": {"host": "{{enmasse-broker-url}}"},
}


def test_root_redirects_to_docs(client):
    response = client.get("/", follow_redirects=False)
    assert response.status_code in (302, 307)
    assert response.headers["location"] == "/docs"


def test_resolve_namespace(client, fake_cluster):
    response = client.post("/namespaces", json={"username": "alice", "display_name": "Alice"})

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == namespace_for_user(User(username="alice")).name
    assert body["display_name"] == "Alice's Walkthroughs"
    assert len(fake_cluster.created("NamespaceRequest")) == 1


def test_resolve_namespace_rejects_empty_username(client):
    response = client.post("/namespaces", json={"username": ""})
    assert response.status_code == 400


def test_provision_walkthrough(client, store):
    response = client.post(
        "/walkthroughs/wt-1/provision",
        json={
            "user": {"username": "alice"},
            "services": [{"name": "enmasse"}, {"name": "not-in-catalog"}],
            "templates": [ROUTE_TEMPLATE, {"metadata": {"name": "x"}, "spec": {"a": "{{nope}}"}}],
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["walkthrough_id"] == "wt-1"
    assert body["submitted"][0]["spec"]["host"] == "amqps://broker"
    assert [failure["index"] for failure in body["failed"]] == [1]
    assert store.attributes("wt-1")[0]["enmasse-credentials-username"] == "alice"


def test_provision_failure_maps_to_bad_gateway(client, fake_cluster):
    fake_cluster.create_errors["NamespaceRequest"] = command_error("Error from server (Forbidden): quota exceeded")

    response = client.post("/walkthroughs/wt-1/provision", json={"user": {"username": "alice"}})

    assert response.status_code == 502
    assert "quota exceeded" in response.json()["detail"]


def test_list_walkthrough_services_reads_registry(client, store):
    store.walkthrough_service_added(
        "wt-1", {"kind": "ServiceInstance", "metadata": {"name": "amq", "namespace": "ns"}}
    )

    response = client.get("/walkthroughs/wt-1/services")

    assert response.status_code == 200
    assert [(entry["kind"], entry["name"]) for entry in response.json()] == [("ServiceInstance", "amq")]
    assert client.get("/walkthroughs/other/services").json() == []


def test_render_template(client):
    response = client.post(
        "/templates/render",
        json={"template": {"kind": "ServiceInstance", "spec": {"user": "{{name}}"}}, "attributes": {"name": "alice"}},
    )
    assert response.status_code == 200
    assert response.json() == {"kind": "ServiceInstance", "spec": {"user": "alice"}}


def test_render_template_missing_attribute_is_unprocessable(client):
    response = client.post("/templates/render", json={"template": {"spec": {"user": "{{name}}"}}})
    assert response.status_code == 422
    assert "name" in response.json()["detail"]

