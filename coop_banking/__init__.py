"""
Cooperative Back Office

Financial-integrity core for a cooperative savings-and-loan association.
"""

__version__ = "1.0.0"
