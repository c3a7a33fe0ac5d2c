"""
Services package for Emotion Mesh.

This package contains service modules for external APIs:
- Azure Face API: emotion attribute used as the optional auxiliary prior
"""
