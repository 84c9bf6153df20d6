"""
The PythonWatchManager runs the operator with plain python threads
"""

# Local
from .python_watch_manager import PythonWatchManager
