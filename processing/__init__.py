"""
Processing package for the Moose WMU Map Pipeline

This package contains the spatial integration and classification stages that
turn survey, density and prediction data into map layers.
"""

__version__ = "0.1.0"

# Import key entry points for easy access
from .classify import QuantileClassification, classify
from .errors import (
    AmbiguousJoin,
    CRSMismatch,
    EmptyPopulation,
    InvalidGeometry,
    InvalidObservation,
    MalformedIdentifier,
    PipelineError,
    SchemaMismatch,
    ShapeMismatch,
)
from .identifiers import normalize_unit_code
from .layers import Layer, LayerBundle, LayerKind, assemble_layer
from .pipeline import PipelineInputs, PipelineSettings, build_layers

__all__ = [
    "normalize_unit_code",
    "classify",
    "QuantileClassification",
    "assemble_layer",
    "Layer",
    "LayerBundle",
    "LayerKind",
    "PipelineInputs",
    "PipelineSettings",
    "build_layers",
    "PipelineError",
    "MalformedIdentifier",
    "AmbiguousJoin",
    "SchemaMismatch",
    "InvalidGeometry",
    "CRSMismatch",
    "InvalidObservation",
    "EmptyPopulation",
    "ShapeMismatch",
]
