"""Camera calibration: planar-target intrinsic and extrinsic calibration.

A small Python package that drives a calibration session over a
sequence of images of a chessboard or circle-grid target, solves for
the camera matrix and distortion coefficients, and persists the result
in an OpenCV ``FileStorage`` artifact that downstream code can reload.
"""

__version__ = "0.1.0"
