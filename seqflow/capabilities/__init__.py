"""External capabilities invoked by workflow tasks.

Each capability is a plain function taking resolved inputs as keyword
arguments and returning a dictionary of outputs. They wrap command line
tools and are black boxes to the scheduler:

  - align.py: bwa mem alignment, duplicate marking and merging of read units.
  - metrics.py: alignment quality metrics.
  - contamination.py: VerifyBamID2 contamination estimates.
  - fingerprint.py: Picard cross-checking of sample fingerprints.
"""
