"""
Exporters package.
"""

from exporters.tracks import TrackExporter, export_tracking_outputs

__all__ = [
    'TrackExporter',
    'export_tracking_outputs',
]
