"""
User roles enumeration.

Defines the role types for the waste-collection scheduling system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        CUSTOMER: Owns bins and submits pickup requests
        OPERATOR: Approves requests, assigns workers, manages routes
        WC1, WC2, WC3: Waste collectors (tiers), execute routes
    """
    CUSTOMER = "CUSTOMER"
    OPERATOR = "OPERATOR"
    WC1 = "WC1"
    WC2 = "WC2"
    WC3 = "WC3"


COLLECTOR_ROLES = (UserRole.WC1, UserRole.WC2, UserRole.WC3)
