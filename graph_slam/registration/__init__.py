"""
Pairwise payload registration.
"""

from .registrar import Registrar, RegistrationResult
from .icp import IcpRegistrar

__all__ = [
    'Registrar',
    'RegistrationResult',
    'IcpRegistrar'
]
