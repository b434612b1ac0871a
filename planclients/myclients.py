# ============================================================================
# Configuration File for Client Network Planning
# ============================================================================
# Copy this file to your working directory as "myclients.py" and edit it there.
# Anything you set in your copy overrides the values below, and anything passed
# on the command line overrides your copy.

# ============================================================================
# Registry
# ============================================================================

# The CIDR registry lives at the repository root. Every client VPC allocation
# is recorded here BEFORE any layer is applied.
REGISTRY_PATH = "cidr-registry.yaml"

# Client VPC blocks are carved out of this supernet.
# 10/8 gives us 256 /16 client VPCs before we run out.
ALLOCATION_POOL = "10.0.0.0/8"

# Size of a freshly allocated client VPC.
# Don't go smaller than /16: the subnet layout below widens by up to 8 bits
# and we refuse to create anything smaller than a /24.
ALLOCATION_PREFIX = 16

# Skip the first N blocks of ALLOCATION_POOL when auto-allocating.
# We start at 10.2.0.0/16 because 10.0.0.0/16 and 10.1.0.0/16 collide with
# too many default VPCs, VPNs and home routers.
START_OFFSET = 2

# ============================================================================
# Subnet Layout
# ============================================================================

# Number of availability zones every client VPC spans.
AVAILABILITY_ZONE_COUNT = 2

# Nothing smaller than a /24 is ever handed out.
MIN_SUBNET_PREFIX = 24

# (tier name, bits to widen the VPC prefix by, first subnet index)
# Zone N of a tier gets subnet index (offset + N).
# For a /16 VPC:
#   - public:   /24s starting at x.x.0.0   (first /20 of the VPC)
#   - platform: /20s starting at x.x.16.0  (index 0 is left to the /24 tiers)
#   - database: /24s starting at x.x.240.0 (last /20 of the VPC)
#   - compute:  /24s starting at x.x.248.0
# DO NOT CHANGE these once clients are provisioned.
# Changing an offset moves every subnet of that tier in every client VPC.
TIER_LAYOUT = [
    ("public", 8, 0),
    ("platform", 4, 1),
    ("database", 8, 240),
    ("compute", 8, 248),
]

# The first layout we shipped put database at index 16 and compute at index 32.
# Those /24s sit inside platform's /20s (x.x.16.0/20 and x.x.32.0/20), so
# TierLayout.check() refuses it and derive() will not use it. Kept as the record
# of where subnets in VPCs planned with it were placed:
#   TierLayout(LEGACY_TIER_LAYOUT).check(2)  -> TierLayoutError
LEGACY_TIER_LAYOUT = [
    ("public", 8, 0),
    ("platform", 4, 1),
    ("database", 8, 16),
    ("compute", 8, 32),
]

# ============================================================================
# Naming & Tagging
# ============================================================================

# Resource names are "<client>--<environment>--<region>--<kind>[--<qualifier>]".
# Components may contain single hyphens but never two in a row, so a double
# hyphen always marks a component boundary.
NAME_SEPARATOR = "--"

MANAGED_BY = "Terraform"

# Tags applied under every client's standard tags.
COMMON_TAGS = {}

# ============================================================================
# Layers
# ============================================================================

# Published layer outputs are stored under here, one directory per
# region/layer/environment (mirrors the terraform state key layout).
STATE_ROOT = "state"

# Planner output.
PLAN_RESULT = "planned.clients.json"
ZONES_CACHE = "cache.myzones.json"
