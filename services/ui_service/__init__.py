"""
UI service - preference state, viewport classification and sidebar reactions.
"""

from .preferences import DeviceType, UIPreferences, UIPreferenceStore, classify_viewport
from .reactions import bind_sidebar_reactions

__all__ = [
    'DeviceType',
    'UIPreferences',
    'UIPreferenceStore',
    'classify_viewport',
    'bind_sidebar_reactions'
]
