"""
LEDESC - Source Package

Tracks a monthly gastronomic benefit: purchases, the discount each one
earns, the merchants where they happened, and where the data lives.

DESIGN PRINCIPLES:
1. One owner for application state
2. Storage backends are swappable, never mixed
3. Remote state is authoritative while signed in
4. Fail visibly, never silently fall back
5. Every import says exactly what it had to fix
"""

__version__ = "1.0.0"
__author__ = "LEDESC Team"
