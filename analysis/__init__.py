"""
Analysis package for the Moose WMU Map Pipeline

Rendering of pipeline layers as interactive maps.
"""
