"""
Clinical forms core for Kenyan sexual-violence case documentation.

Document state engine for the P3 (official and simplified) and MOH 363
post-rape-care forms, plus the PEP/EC time-critical window calculator.
"""

__version__ = "1.0.0"
