class DriftCorrError(Exception):
    """Base class for errors raised by the analysis."""


class AlignmentError(DriftCorrError):
    """Animal and particle tracks disagree after matching; the run must stop."""


class TrendFitError(DriftCorrError):
    """The population trend model cannot be fitted to the supplied points."""
