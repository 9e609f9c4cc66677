"""
Mean-Variance Frontier Engine

Computes Markowitz efficient frontiers with and without short sales and tracks
the tangency portfolio across rolling estimation windows.
"""

__version__ = "0.1.0"
__author__ = "Portfolio Optimization Team"
