"""
Binned statistical unfolding

Corrects measured binned distributions for detector smearing and
efficiency using a response matrix, with four error treatments including
toy Monte-Carlo covariance estimation.
"""

__version__ = '0.1.0'

from .modules.engine import REGPARM_UNSET, ErrorTreatment, UnfoldingEngine, UnfoldResult, create
from .modules.histogram import Histogram
from .modules.response import ResponseMatrix
from .modules.strategies import Algorithm, UnfoldStrategy, register_algorithm
from .modules.toys import ToyPolicy

__all__ = [
    'Algorithm',
    'ErrorTreatment',
    'Histogram',
    'REGPARM_UNSET',
    'ResponseMatrix',
    'ToyPolicy',
    'UnfoldResult',
    'UnfoldStrategy',
    'UnfoldingEngine',
    'create',
    'register_algorithm',
]
