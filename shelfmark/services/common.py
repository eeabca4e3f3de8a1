from urllib.parse import urlparse

MAX_TAG_LENGTH = 64


def parse_tags(raw) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, (list, tuple, set)):
        tokens = [str(item) for item in raw if item is not None]
    else:
        tokens = str(raw).replace(";", ",").split(",")

    names: list[str] = []
    seen: set[str] = set()
    for token in tokens:
        name = token.strip().lower()[:MAX_TAG_LENGTH]
        if name and name not in seen:
            seen.add(name)
            names.append(name)
    return names


def merge_tags(existing: list[str], incoming: list[str]) -> list[str]:
    merged = list(existing)
    for name in incoming:
        if name not in merged:
            merged.append(name)
    return merged


def domain_of(url: str | None) -> str | None:
    try:
        host = urlparse((url or "").strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host.removeprefix("www.")


def to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
