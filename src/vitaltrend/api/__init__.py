"""
VitalTrend API

FastAPI application exposing the vital-sign query pipeline.
"""
