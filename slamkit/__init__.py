"""Rotations, Lie groups, bundle adjustment, pose graphs, point clouds and ORB features for SLAM."""

__version__ = "0.1.0"