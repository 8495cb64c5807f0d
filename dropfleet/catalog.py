"""DigitalOcean catalog queries: images, regions, sizes and SSH keys.

Used to fill configuration choices and to resolve a template's image
reference into something the droplet create call accepts.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from dropfleet.client import call_api, get_client, paginate
from dropfleet.constants import API_PAGE_SIZE

log = logger.bind(component="catalog")


def image_reference(image_id: str) -> int | str:
    """Convert a template image id into a create-call image value.

    Numeric ids (snapshots, backups) are sent as integers, anything else
    is treated as a public image slug.
    """
    image_id = image_id.strip()
    return int(image_id) if image_id.isdigit() else image_id


def image_identifier(image: dict[str, Any]) -> str:
    """Slug for public images, numeric id for snapshots and backups."""
    return image.get("slug") or str(image["id"])


def _image_display_name(image: dict[str, Any]) -> str:
    if image.get("public"):
        return f"{image.get('distribution', '')} {image.get('name', '')}".strip()
    return f"{image.get('type', 'snapshot').capitalize()}: {image.get('name', image['id'])}"


def get_image(client: Any, image_id: str) -> dict[str, Any]:
    """Fetch a single image by numeric id or slug."""
    ref = image_reference(image_id)
    resp = call_api("get image", lambda: client.images.get(image_id=ref))
    return resp["image"]


def available_images(client: Any) -> dict[str, dict[str, Any]]:
    """All available images keyed by display name, sorted by name."""
    images = call_api(
        "list images",
        lambda: paginate(client.images.list, "images", API_PAGE_SIZE),
    )
    by_name = {
        _image_display_name(image): image
        for image in images
        if image.get("status", "available") == "available"
    }
    return dict(sorted(by_name.items()))


def available_regions(client: Any) -> list[dict[str, Any]]:
    regions = call_api(
        "list regions",
        lambda: paginate(client.regions.list, "regions", API_PAGE_SIZE),
    )
    return [r for r in regions if r.get("available", True)]


def available_sizes(client: Any) -> list[dict[str, Any]]:
    """Available droplet sizes, cheapest first."""
    sizes = call_api(
        "list sizes",
        lambda: paginate(client.sizes.list, "sizes", API_PAGE_SIZE),
    )
    return sorted(
        (s for s in sizes if s.get("available", True)),
        key=lambda s: (s.get("price_monthly", 0), s.get("memory", 0), s["slug"]),
    )


def size_label(size: dict[str, Any]) -> str:
    """Human-readable one-line description of a droplet size."""
    return (
        f"{size['slug']}: {size.get('memory', 0)} MB RAM, "
        f"{size.get('vcpus', 0)} vCPU, {size.get('disk', 0)} GB disk, "
        f"${size.get('price_monthly', 0)}/month"
    )


def available_keys(client: Any) -> list[dict[str, Any]]:
    return call_api(
        "list ssh keys",
        lambda: paginate(client.ssh_keys.list, "ssh_keys", API_PAGE_SIZE),
    )


def key_label(key: dict[str, Any]) -> str:
    return f"{key.get('name', '')} ({key.get('fingerprint', '')})"


def check_connection(token: str) -> bool:
    """Check that a token can talk to the API."""
    client = get_client(token)
    try:
        call_api("list droplets", lambda: client.droplets.list(page=1, per_page=1))
    except Exception as e:
        log.warning("DigitalOcean API check failed: {err}", err=e)
        return False
    return True
