"""
Cluster playground compute engine.

K-Means, DBSCAN and agglomerative clustering running in an isolated executor,
driven by a single-flight coordinator with debounced re-runs, cancellation
and undo/redo history.
"""

__version__ = "1.0.0"
