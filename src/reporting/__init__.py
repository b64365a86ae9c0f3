"""
Run artifacts for vault simulations.
"""

from .artifact_writer import ArtifactWriter, create_artifact_writer

__all__ = [
    "ArtifactWriter",
    "create_artifact_writer",
]
