from .align import align_tracks, check_alignment
from .bearings import calculate_bearings, initial_bearing
from .correlation import CircularCorrelation, circular_correlation, cumulative_circular_correlation, pair_bearings
from .critical import extract_critical_period
from .errors import AlignmentError, DriftCorrError, TrendFitError
from .trend import TrendModelFit, fit_trend_model
