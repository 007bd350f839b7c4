"""DNS hostname checks shared by the entity models."""

from __future__ import annotations

import ipaddress
import re

_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def normalize(name: str) -> str:
    return name.strip().lower().rstrip(".")


def is_hostname(name: str, *, allow_wildcard: bool = False) -> bool:
    """Return True if *name* (already normalized) is a valid DNS hostname.

    With ``allow_wildcard`` a single leading ``*.`` label is accepted, as used
    by certificate subjects.
    """
    if not name or len(name) > 253:
        return False
    labels = name.split(".")
    if allow_wildcard and labels[0] == "*":
        labels = labels[1:]
        if len(labels) < 2:
            return False
    return all(_LABEL_RE.match(label) for label in labels)


def is_ip_literal(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def name_covers(cert_name: str, host: str) -> bool:
    """True if a certificate subject name covers *host*.

    A wildcard ``*.example.com`` covers exactly one extra label:
    ``a.example.com`` but neither ``example.com`` nor ``a.b.example.com``.
    """
    if cert_name == host:
        return True
    if cert_name.startswith("*."):
        zone = cert_name[2:]
        head, _, rest = host.partition(".")
        return bool(head) and rest == zone
    return False
