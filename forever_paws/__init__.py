"""Forever Paws client core"""

__version__ = "1.0.0"
