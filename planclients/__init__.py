from .errors import (
    FormatViolation,
    InsufficientAddressSpace,
    InvalidZoneCount,
    LockContention,
    MissingUpstreamReference,
    OverlapViolation,
    PlannerError,
    PrivateRangeViolation,
)
from .models import ClientRecord, RegistryEntry, ReservedRange
from .naming import merge_tags, name, tags
from .subnets import DerivedSubnetSet, derive
from .validate import ValidationReport, validate

__version__ = "0.1.0"
