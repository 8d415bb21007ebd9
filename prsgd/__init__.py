"""
Parallel Restarted SGD

Workers run local SGD on their own loss functions as Ray actors; after each
round the coordinator averages their parameters.
"""

__version__ = "0.1.0"
