import ipaddress
import re

from .errors import FormatViolation

# RFC 1918
PRIVATE_RANGES = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
]

CIDR_PATTERN = re.compile(r"^([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})/([0-9]{1,2})$")


def parse_block(text, field: str = "address_block") -> ipaddress.IPv4Network:
    """Parse canonical CIDR notation ("10.0.0.0/16") or raise FormatViolation.

    Canonical means dotted-quad, octets 0-255 without leading zeros, prefix 0-32
    and no host bits set. "10.0.0.1/16" is a typo for something, so we reject it
    instead of guessing which network was meant.
    """
    if not isinstance(text, str):
        raise FormatViolation(
            f"{field} must be a CIDR string, got {type(text).__name__}",
            field=field,
            value=text,
        )

    m = CIDR_PATTERN.match(text.strip())
    if not m:
        raise FormatViolation(
            f"{field} {text!r} is not in a.b.c.d/prefix notation",
            field=field,
            value=text,
        )

    *octets, prefix = m.groups()
    for o in octets:
        if int(o) > 255:
            raise FormatViolation(
                f"{field} {text!r} has octet {o} outside 0-255", field=field, value=text
            )
        if len(o) > 1 and o.startswith("0"):
            raise FormatViolation(
                f"{field} {text!r} has octet {o} with a leading zero",
                field=field,
                value=text,
            )

    if int(prefix) > 32:
        raise FormatViolation(
            f"{field} {text!r} has prefix /{prefix} outside 0-32",
            field=field,
            value=text,
        )

    try:
        return ipaddress.IPv4Network(text.strip(), strict=True)
    except ValueError:
        pass

    try:
        network = ipaddress.IPv4Network(text.strip(), strict=False)
    except ValueError as e:
        raise FormatViolation(f"{field} {text!r}: {e}", field=field, value=text) from None

    raise FormatViolation(
        f"{field} {text!r} has host bits set (did you mean {network}?)",
        field=field,
        value=text,
    )


def is_private(network: ipaddress.IPv4Network) -> bool:
    return any(network.subnet_of(r) for r in PRIVATE_RANGES)


def describe_overlap(a: ipaddress.IPv4Network, b: ipaddress.IPv4Network) -> str:
    if a == b:
        return f"{a} is identical to {b}"
    if b.subnet_of(a):
        return f"{b} is contained within {a}"
    if a.subnet_of(b):
        return f"{a} is contained within {b}"

    # can't happen for CIDR blocks, but keep the message honest anyway
    return f"{a} overlaps {b}"
