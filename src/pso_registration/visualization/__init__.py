"""
Visualization Module

This module provides visualization tools for point clouds and registration progress.
The module uses Plotly or PyVista as a backend for rendering interactive visualizations.
"""

from .point_cloud import PointCloudVisualizer, LiveRegistrationViewer, cost_history_figure, plot_cost_history

__all__ = [
    "PointCloudVisualizer",
    "LiveRegistrationViewer",
    "cost_history_figure",
    "plot_cost_history",
]
