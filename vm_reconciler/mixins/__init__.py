"""Convergence steps composed into Session"""

from .customization import CustomizationMixin
from .power import PowerStateMixin
from .status import StatusMixin
from .affinity import AffinityMixin

__all__ = ['CustomizationMixin', 'PowerStateMixin', 'StatusMixin', 'AffinityMixin']
