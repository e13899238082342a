"""
errors.py - Pipeline Error Kinds

Every error raised by the processing stages derives from PipelineError so the
CLI can report any stage failure the same way. None of these are recoverable
inside a run: the pipeline stops at the first one and writes nothing.
"""


class PipelineError(Exception):
    """Base class for all processing errors."""


class MalformedIdentifier(PipelineError, ValueError):
    """A management-unit code could not be normalized."""


class AmbiguousJoin(PipelineError):
    """A supposedly unique key appears more than once in a join source."""


class SchemaMismatch(PipelineError):
    """A table is missing declared columns or a join would clobber a column."""


class InvalidGeometry(PipelineError):
    """Null, empty, zero-area or self-intersecting polygon input."""


class CRSMismatch(PipelineError):
    """Frames compared spatially are in different reference systems."""


class InvalidObservation(PipelineError, ValueError):
    """An observation record violates count >= 1."""


class EmptyPopulation(PipelineError):
    """Quantile classification was given fewer than 2 distinct values."""


class ShapeMismatch(PipelineError):
    """Geometry count and attribute-row count disagree at layer assembly."""
