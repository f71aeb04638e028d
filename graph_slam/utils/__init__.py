"""
Utility modules for pose-graph SLAM.
"""

from .math_utils import *
