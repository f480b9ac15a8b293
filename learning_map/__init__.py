"""Learning map core: graph of lessons and questions, navigation, layout and projection"""

from .graph import GraphModel
from .layout import LayoutEngine, compute_layout
from .navigation import NavigationController
from .projection import VisualizationProjector
from .session import LearningMapSession

__all__ = [
    'GraphModel',
    'LayoutEngine',
    'LearningMapSession',
    'NavigationController',
    'VisualizationProjector',
    'compute_layout',
]
