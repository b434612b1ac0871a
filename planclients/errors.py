"""Everything the planner can refuse to do."""


class PlannerError(Exception):
    """Base class for planner failures."""


class RegistryError(PlannerError):
    """The registry file is missing or not shaped like a registry."""


class FormatViolation(PlannerError):
    """A malformed CIDR block, identifier or client table field."""

    def __init__(self, message: str, field: str = None, value=None):
        super().__init__(message)
        self.field = field
        self.value = value


class OverlapViolation(PlannerError):
    """Two allocations share address space."""

    def __init__(self, message: str, findings: list = None):
        super().__init__(message)
        self.findings = findings or []


class PrivateRangeViolation(PlannerError):
    """An allocation lies outside RFC 1918 space."""


class InsufficientAddressSpace(PlannerError):
    """Parent block is too small for the tier layout."""


class InvalidZoneCount(PlannerError):
    """Fewer than two (or duplicated) availability zones."""


class TierLayoutError(PlannerError):
    """A configured tier layout would hand out colliding subnets."""


class MissingUpstreamReference(PlannerError):
    """A layer needs upstream outputs that are not published."""

    def __init__(self, layer, missing: list):
        self.layer = layer
        self.missing = missing
        lines = "\n".join(f"  - {m}" for m in missing)
        super().__init__(
            f"Layer {layer} cannot be applied, {len(missing)} upstream reference(s) missing:\n{lines}"
        )


class LayerContractError(PlannerError):
    """A published output does not honor its layer's contract."""


class LockContention(PlannerError):
    """Someone else holds the state lock."""

    def __init__(self, path, holder: str = ""):
        self.path = path
        self.holder = holder
        super().__init__(f"[{path}] State is locked{' by ' + holder if holder else ''}")
