"""
Bocadi - weekly meal planning backend.

Nutrition estimation with a Supabase-backed cache, weekly aggregation and
the PDF nutrition report.
"""

__version__ = "0.1.0"
