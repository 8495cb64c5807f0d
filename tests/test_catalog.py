from unittest.mock import patch

import pytest

from dropfleet import catalog
from dropfleet.core.exceptions import RemoteAPIError
from tests.fakes import FakeAPIError, FakeClient

IMAGES = [
    {"id": 1, "slug": "ubuntu-24-04-x64", "name": "24.04 (LTS) x64", "distribution": "Ubuntu", "public": True},
    {"id": 2, "slug": "debian-12-x64", "name": "12 x64", "distribution": "Debian", "public": True},
    {"id": 9001, "slug": None, "name": "build-agent-2026", "type": "snapshot", "public": False},
    {"id": 9002, "slug": None, "name": "old", "type": "backup", "public": False, "status": "deleted"},
]


@pytest.fixture
def client() -> FakeClient:
    client = FakeClient(page_limit=2)
    client.images.items = list(IMAGES)
    client.regions.items = [
        {"slug": "fra1", "name": "Frankfurt 1", "available": True},
        {"slug": "nyc2", "name": "New York 2", "available": False},
    ]
    client.sizes.items = [
        {"slug": "c-8", "memory": 16384, "vcpus": 8, "disk": 100, "price_monthly": 168, "available": True},
        {"slug": "s-1vcpu-1gb", "memory": 1024, "vcpus": 1, "disk": 25, "price_monthly": 6, "available": True},
        {"slug": "gpu-h100x1", "memory": 245760, "vcpus": 20, "disk": 720, "price_monthly": 4500, "available": False},
    ]
    client.ssh_keys.items = [{"id": 42, "name": "ci", "fingerprint": "aa:bb"}]
    return client


class TestImages:
    @pytest.mark.parametrize(
        ("image_id", "expected"),
        [("123", 123), (" 42 ", 42), ("ubuntu-24-04-x64", "ubuntu-24-04-x64")],
    )
    def test_image_reference(self, image_id, expected):
        assert catalog.image_reference(image_id) == expected

    def test_image_identifier(self):
        assert catalog.image_identifier(IMAGES[0]) == "ubuntu-24-04-x64"
        assert catalog.image_identifier(IMAGES[2]) == "9001"

    def test_available_images_keyed_by_display_name(self, client):
        images = catalog.available_images(client)
        assert list(images) == [
            "Debian 12 x64",
            "Snapshot: build-agent-2026",
            "Ubuntu 24.04 (LTS) x64",
        ]

    def test_get_image_by_numeric_id(self, client):
        assert catalog.get_image(client, "9001")["name"] == "build-agent-2026"

    def test_get_image_by_slug(self, client):
        assert catalog.get_image(client, "debian-12-x64")["id"] == 2

    def test_get_image_missing(self, client):
        with pytest.raises(RemoteAPIError, match="get image"):
            catalog.get_image(client, "77")


class TestRegionsSizesKeys:
    def test_unavailable_regions_filtered(self, client):
        assert [r["slug"] for r in catalog.available_regions(client)] == ["fra1"]

    def test_sizes_cheapest_first(self, client):
        assert [s["slug"] for s in catalog.available_sizes(client)] == ["s-1vcpu-1gb", "c-8"]

    def test_size_label(self, client):
        size = catalog.available_sizes(client)[0]
        assert catalog.size_label(size) == "s-1vcpu-1gb: 1024 MB RAM, 1 vCPU, 25 GB disk, $6/month"

    def test_keys(self, client):
        keys = catalog.available_keys(client)
        assert [catalog.key_label(k) for k in keys] == ["ci (aa:bb)"]


class TestCheckConnection:
    def test_ok(self):
        with patch("dropfleet.catalog.get_client", return_value=FakeClient()):
            assert catalog.check_connection("dop_v1_x") is True

    def test_failure(self):
        with patch("dropfleet.catalog.get_client", return_value=FakeClient(list_error=FakeAPIError("401"))):
            assert catalog.check_connection("bad") is False
