"""
VitalTrend: conversational vital-sign trend analysis

Answers natural-language questions about a patient's vital-sign history by
routing the query through intake, routing, retrieval, trend analytics and
output composition stages.
"""

__version__ = "0.1.0"
__author__ = "VitalTrend Team"
