# Models package init
"""
Importing this package registers every ORM model with Base.metadata, so the
string-based relationships between them resolve.
"""

from marketplace.models.media import Media, MediaType
from marketplace.models.service_offering import ServiceOffering
from marketplace.models.specialist import Specialist, VerificationStatus

__all__ = ["Media", "MediaType", "ServiceOffering", "Specialist", "VerificationStatus"]
