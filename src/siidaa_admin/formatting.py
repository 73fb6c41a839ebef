# src/siidaa_admin/formatting.py

import typing
from datetime import datetime

PLACEHOLDER_IMAGE = "/placeholder-image.jpg"


def format_duration(duration: str) -> str:
    """Backend durations come as HH:MM:SS. Hours are dropped when zero."""
    parts = duration.split(":")
    if len(parts) != 3:
        return duration
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = int(float(parts[2]))
    except ValueError:
        return duration
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def format_price(price: typing.Union[str, int, float]) -> str:
    return f"${float(price):.2f}"


def format_date(date_string: str) -> str:
    parsed = datetime.fromisoformat(date_string.replace("Z", "+00:00"))
    return f"{parsed.month}/{parsed.day}/{parsed.year}"


def get_image_url(image_path: typing.Optional[str], api_base_url: str) -> str:
    if not image_path:
        return PLACEHOLDER_IMAGE
    if image_path.startswith("http"):
        return image_path
    clean_path = image_path if image_path.startswith("/") else f"/{image_path}"
    return f"{api_base_url.rstrip('/')}{clean_path}"


def present_catalog_item(item: typing.Any, api_base_url: str) -> typing.Any:
    """
    Adds display fields next to the raw backend values: `image_url`, `duration_display`,
    `price_display` and `release_date_display`. Values that do not parse are left without
    a display field. Anything that is not a dict passes through unchanged.
    """
    if not isinstance(item, dict):
        return item
    shown = dict(item)
    if "image" in item:
        shown["image_url"] = get_image_url(item["image"], api_base_url)
    if isinstance(item.get("duration"), str):
        shown["duration_display"] = format_duration(item["duration"])
    if item.get("price") is not None:
        try:
            shown["price_display"] = format_price(item["price"])
        except (TypeError, ValueError):
            pass
    if isinstance(item.get("release_date"), str):
        try:
            shown["release_date_display"] = format_date(item["release_date"])
        except ValueError:
            pass
    return shown
