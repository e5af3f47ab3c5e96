"""
Adaptive Assessment Engine

This package defines assessments, runs timed per-student sessions against
them and reports on the results.

The engine features:
1. Template-based question generation scaled by difficulty tier
2. Rule-based answer evaluation by question type
3. Adaptive difficulty adjustment based on recent performance
4. Real-time feedback with hints, explanations and encouragement
5. Per-session analytics and per-assessment reports
6. Integrity hooks and time-limit supervision
"""

__version__ = "0.1.0"
