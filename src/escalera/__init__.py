"""
Escalera - round lifecycle and scoring engine for padel ladder tournaments.

Groups of four players play three sets per round. Results are reported,
cross-confirmed and aggregated into points that decide promotion and
relegation between groups when the round closes.
"""

__version__ = "1.0.0"
