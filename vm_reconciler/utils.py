import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import jinja2


_QUANTITY_RE = re.compile(r"^([+-]?[0-9.]+(?:[eE][+-]?[0-9]+)?)([a-zA-Z]*)$")

_BINARY_SUFFIXES = {
    "Ki": 2 ** 10,
    "Mi": 2 ** 20,
    "Gi": 2 ** 30,
    "Ti": 2 ** 40,
    "Pi": 2 ** 50,
    "Ei": 2 ** 60,
}

_DECIMAL_SUFFIXES = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "": Decimal(1),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}

_template_env = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False)


def parse_quantity(quantity: Any) -> Decimal:
    """
    Parse a Kubernetes-style quantity ("500m", "2Gi", "1.5", "1e3") into a Decimal.

    Raises:
        ValueError: if the quantity is malformed
    """
    if isinstance(quantity, (int, float)):
        return Decimal(str(quantity))

    text = str(quantity).strip()
    match = _QUANTITY_RE.match(text)
    if not match:
        raise ValueError(f"invalid quantity: {quantity!r}")

    number, suffix = match.groups()
    try:
        value = Decimal(number)
    except InvalidOperation:
        raise ValueError(f"invalid quantity: {quantity!r}")

    if suffix in _BINARY_SUFFIXES:
        return value * _BINARY_SUFFIXES[suffix]
    if suffix in _DECIMAL_SUFFIXES:
        return value * _DECIMAL_SUFFIXES[suffix]
    raise ValueError(f"invalid quantity suffix {suffix!r} in {quantity!r}")


def is_zero_quantity(quantity: Optional[str]) -> bool:
    return quantity is None or quantity == "" or parse_quantity(quantity) == 0


def cpu_quantity_to_mhz(quantity: str, min_cpu_freq_mhz: int) -> int:
    """Convert a CPU quantity to MHz using the slowest host CPU in the cluster."""
    millicores = parse_quantity(quantity) * 1000
    return int(math.ceil(float(millicores) * float(min_cpu_freq_mhz) / 1000))


def memory_quantity_to_mb(quantity: str) -> int:
    return int(math.ceil(float(parse_quantity(quantity)) / float(1024 * 1024)))


def storage_quantity_to_bytes(quantity: str) -> int:
    return int(parse_quantity(quantity))


def ip_cidr_notation(ip_address: str, prefix: int) -> str:
    return f"{ip_address}/{prefix}"


def render_template(text: str, data: Dict[str, Any]) -> str:
    """
    Render a Jinja2 template string against data.

    Raises:
        jinja2.TemplateError: on a syntax error or an undefined variable
    """
    return _template_env.from_string(text).render(**data)
